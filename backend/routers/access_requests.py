"""Access requests router: ask to join a public subscription, approve or reject requests."""

from datetime import datetime
from typing import Annotated, Literal
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, audit_access_request_processed
from utils.notifications import NotificationAutomation
from utils.rate_limiter import access_request_rate_limiter
from utils.validation import get_subscription_member, is_subscription_full, reserve_subscription_spot


router = APIRouter(prefix="/access-requests", tags=["access requests"])


def get_access_request_or_404(db: Session, request_id: int):
    access_request = db.query(models.AccessRequest).filter(models.AccessRequest.id == request_id).first()
    if not access_request:
        raise HTTPException(status_code=404, detail="Access request not found")
    return access_request


@router.get("", response_model=list[schemas.AccessRequestDetail])
def read_access_requests(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    type: Literal["sent", "received", "all"] = "all"
):
    query = db.query(models.AccessRequest, models.Subscription).join(
        models.Subscription, models.AccessRequest.subscription_id == models.Subscription.id
    )

    if type == "sent":
        query = query.filter(models.AccessRequest.user_id == current_user.id)
    elif type == "received":
        query = query.filter(models.Subscription.owner_id == current_user.id)
    else:
        query = query.filter(or_(
            models.AccessRequest.user_id == current_user.id,
            models.Subscription.owner_id == current_user.id
        ))

    rows = query.order_by(models.AccessRequest.requested_at.desc(), models.AccessRequest.id.desc()).all()

    return [
        schemas.AccessRequestDetail(
            **schemas.AccessRequest.model_validate(access_request).model_dump(),
            subscription_name=subscription.name,
            subscription_service=subscription.service_name
        )
        for access_request, subscription in rows
    ]


@router.post("", response_model=schemas.AccessRequest, status_code=201, dependencies=[Depends(access_request_rate_limiter)])
def create_access_request(
    body: schemas.AccessRequestCreate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = db.query(models.Subscription).filter(
        models.Subscription.id == body.subscription_id,
        models.Subscription.is_public == True,
        models.Subscription.is_active == True
    ).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found or not available")

    if subscription.owner_id == current_user.id or get_subscription_member(db, subscription.id, current_user.id):
        raise HTTPException(status_code=400, detail="You are already a member of this subscription")

    pending = db.query(models.AccessRequest).filter(
        models.AccessRequest.user_id == current_user.id,
        models.AccessRequest.subscription_id == subscription.id,
        models.AccessRequest.status == "pending"
    ).first()
    if pending:
        raise HTTPException(status_code=400, detail="You already have a pending request for this subscription")

    if is_subscription_full(subscription):
        raise HTTPException(status_code=400, detail="Subscription is full")

    access_request = models.AccessRequest(
        user_id=current_user.id,
        subscription_id=subscription.id,
        message=body.message,
        status="pending"
    )
    db.add(access_request)
    db.commit()
    db.refresh(access_request)

    NotificationAutomation(db).notify_new_access_request(access_request.id)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.ACCESS_REQUEST_CREATED,
        entity_type=EntityTypes.ACCESS_REQUEST,
        entity_id=access_request.id,
        details={"subscription_id": subscription.id},
    )
    db.refresh(access_request)
    return access_request


def respond_to_request(
    db: Session,
    request: Request,
    request_id: int,
    current_user: models.User,
    body: schemas.AccessRequestResponse,
    approved: bool
) -> models.AccessRequest:
    access_request = get_access_request_or_404(db, request_id)
    subscription = db.query(models.Subscription).filter(
        models.Subscription.id == access_request.subscription_id
    ).first()

    if not subscription or subscription.owner_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the subscription owner can respond to this request")

    if access_request.status != "pending":
        raise HTTPException(status_code=400, detail="This request has already been processed")

    if approved:
        if is_subscription_full(subscription):
            raise HTTPException(status_code=400, detail="Subscription is full")
        if not get_subscription_member(db, subscription.id, access_request.user_id):
            reserve_subscription_spot(db, subscription.id)
            db.add(models.SubscriptionMember(
                subscription_id=subscription.id,
                user_id=access_request.user_id,
                role="member"
            ))

    access_request.status = "approved" if approved else "rejected"
    access_request.admin_response = body.admin_response
    access_request.responded_at = datetime.utcnow()
    access_request.responded_by = current_user.id
    # Membership row, counter and status change commit together
    db.commit()

    NotificationAutomation(db).notify_access_request_response(access_request.id, approved)
    audit_access_request_processed(db, current_user.id, access_request.id, approved, request)

    db.refresh(access_request)
    return access_request


@router.post("/{request_id}/approve", response_model=schemas.AccessRequest)
def approve_access_request(
    request_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    body: schemas.AccessRequestResponse = schemas.AccessRequestResponse()
):
    return respond_to_request(db, request, request_id, current_user, body, approved=True)


@router.post("/{request_id}/reject", response_model=schemas.AccessRequest)
def reject_access_request(
    request_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    body: schemas.AccessRequestResponse = schemas.AccessRequestResponse()
):
    return respond_to_request(db, request, request_id, current_user, body, approved=False)
