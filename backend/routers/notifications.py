"""Notifications router: in-app notifications and the automation trigger."""

from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user, verify_automation_secret
from utils.notifications import NotificationAutomation


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=schemas.NotificationList)
def read_notifications(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    unread_only: bool = False,
    type: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100)
):
    query = db.query(models.Notification, models.Subscription).outerjoin(
        models.Subscription, models.Notification.subscription_id == models.Subscription.id
    ).filter(
        models.Notification.user_id == current_user.id,
        models.Notification.is_archived == False
    )

    if unread_only:
        query = query.filter(models.Notification.is_read == False)
    if type:
        query = query.filter(models.Notification.type == type)

    rows = query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit).all()

    unread_count = db.query(models.Notification).filter(
        models.Notification.user_id == current_user.id,
        models.Notification.is_read == False,
        models.Notification.is_archived == False
    ).count()

    return schemas.NotificationList(
        notifications=[
            schemas.NotificationDetail(
                **schemas.Notification.model_validate(notification).model_dump(),
                subscription_name=subscription.name if subscription else None,
                service_name=subscription.service_name if subscription else None
            )
            for notification, subscription in rows
        ],
        unread_count=unread_count
    )


@router.post("", response_model=schemas.Notification, status_code=201)
def create_notification(
    notification: schemas.NotificationCreate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    now = datetime.utcnow()
    db_notification = models.Notification(
        **notification.model_dump(),
        user_id=current_user.id,
        is_read=False,
        sent_at=now
    )
    db.add(db_notification)
    db.commit()
    db.refresh(db_notification)
    return db_notification


@router.put("/read-all", response_model=schemas.Message)
def mark_all_notifications_read(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    updated = db.query(models.Notification).filter(
        models.Notification.user_id == current_user.id,
        models.Notification.is_read == False
    ).update({"is_read": True, "read_at": datetime.utcnow()})
    db.commit()
    return {"message": f"{updated} notification(s) marked as read"}


@router.put("/{notification_id}/read", response_model=schemas.Notification)
def mark_notification_read(
    notification_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    notification = db.query(models.Notification).filter(
        models.Notification.id == notification_id,
        models.Notification.user_id == current_user.id
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.commit()
        db.refresh(notification)
    return notification


@router.post("/automation", response_model=schemas.AutomationResult, dependencies=[Depends(verify_automation_secret)])
def run_notification_automation(db: Session = Depends(get_db)):
    """Run every periodic notification check. Called by cron with the automation secret."""
    results = NotificationAutomation(db).run_all_checks()
    return {
        "message": "Notification automation completed",
        "results": results,
        "timestamp": datetime.utcnow()
    }


@router.get("/automation", response_model=schemas.Message)
def automation_health():
    return {"message": "Notification automation endpoint is running"}
