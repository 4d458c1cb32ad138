"""Audit router: the current user's audit trail."""

import math
from datetime import datetime
from typing import Annotated, Literal, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import get_action_description, get_severity_label, parse_user_agent
from utils.dates import to_naive_utc


router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=schemas.AuditLogPage)
def read_audit_logs(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    severity: Optional[Literal["low", "medium", "high", "critical"]] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None
):
    query = db.query(models.AuditLog).filter(models.AuditLog.user_id == current_user.id)

    if action:
        query = query.filter(models.AuditLog.action == action)
    if entity_type:
        query = query.filter(models.AuditLog.entity_type == entity_type)
    if severity:
        query = query.filter(models.AuditLog.severity == severity)
    if start_date:
        query = query.filter(models.AuditLog.created_at >= to_naive_utc(start_date))
    if end_date:
        query = query.filter(models.AuditLog.created_at <= to_naive_utc(end_date))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.AuditLog.action.ilike(pattern),
            models.AuditLog.entity_type.ilike(pattern)
        ))

    total = query.count()
    logs = query.order_by(
        models.AuditLog.created_at.desc(), models.AuditLog.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    return schemas.AuditLogPage(
        logs=[
            schemas.AuditLogEntry(
                id=log.id,
                action=log.action,
                entity_type=log.entity_type,
                entity_id=log.entity_id,
                details=log.details,
                severity=log.severity,
                ip_address=log.ip_address,
                user_agent=schemas.ParsedUserAgent(**parse_user_agent(log.user_agent)) if log.user_agent else None,
                created_at=log.created_at,
                action_description=get_action_description(log.action),
                severity_label=get_severity_label(log.severity)
            )
            for log in logs
        ],
        pagination=schemas.Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit)
        )
    )
