"""Subscriptions router: shared subscriptions, the public catalogue and password rotation."""

import math
from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, Severity, audit_password_changed
from utils.notifications import NotificationAutomation
from utils.splits import member_share, price_per_member
from utils.financials import join_position
from utils.validation import (
    get_owned_subscription_or_404, get_visible_subscription_or_404, verify_group_ownership,
    verify_subscription_admin
)


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("", response_model=schemas.Subscription)
def create_subscription(
    subscription: schemas.SubscriptionCreate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    if subscription.group_id is not None:
        verify_group_ownership(db, subscription.group_id, current_user.id)

    db_subscription = models.Subscription(
        **subscription.model_dump(),
        owner_id=current_user.id,
        current_members=1
    )
    db.add(db_subscription)
    db.flush()

    # Creator is the first member
    db.add(models.SubscriptionMember(
        subscription_id=db_subscription.id,
        user_id=current_user.id,
        role="admin"
    ))
    db.commit()
    db.refresh(db_subscription)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.SUBSCRIPTION_CREATED,
        entity_type=EntityTypes.SUBSCRIPTION,
        entity_id=db_subscription.id,
        details={"name": db_subscription.name, "service_name": db_subscription.service_name},
    )
    db.refresh(db_subscription)
    return db_subscription


@router.get("", response_model=list[schemas.SubscriptionWithRole])
def read_subscriptions(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    rows = db.query(models.Subscription, models.SubscriptionMember.role, models.Group.name).outerjoin(
        models.SubscriptionMember,
        (models.SubscriptionMember.subscription_id == models.Subscription.id)
        & (models.SubscriptionMember.user_id == current_user.id)
    ).outerjoin(
        models.Group, models.Subscription.group_id == models.Group.id
    ).filter(
        or_(
            models.Subscription.owner_id == current_user.id,
            models.SubscriptionMember.id != None
        )
    ).order_by(models.Subscription.created_at.desc()).all()

    result = []
    for subscription, role, group_name in rows:
        if role is None and subscription.owner_id == current_user.id:
            role = "admin"
        position = join_position(db, subscription.id, current_user.id)
        result.append(schemas.SubscriptionWithRole(
            **schemas.Subscription.model_validate(subscription).model_dump(),
            role=role,
            group_name=group_name,
            your_share=member_share(subscription.total_price, subscription.current_members or 1, position)
        ))
    return result


@router.get("/public", response_model=schemas.PublicSubscriptionPage)
def read_public_subscriptions(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    search: Optional[str] = None,
    service: Optional[str] = None,
    max_price: Optional[int] = Query(default=None, gt=0),
    available_spots: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50)
):
    query = db.query(models.Subscription, models.Group).outerjoin(
        models.Group, models.Subscription.group_id == models.Group.id
    ).filter(
        models.Subscription.is_public == True,
        models.Subscription.is_active == True
    )

    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Subscription.name.ilike(pattern),
            models.Subscription.service_name.ilike(pattern),
            models.Subscription.description.ilike(pattern)
        ))
    if service:
        query = query.filter(models.Subscription.service_name.ilike(f"%{service}%"))
    if max_price:
        query = query.filter(models.Subscription.total_price < max_price)
    if available_spots:
        query = query.filter(models.Subscription.current_members < models.Subscription.max_members)

    total = query.count()
    rows = query.order_by(
        models.Subscription.created_at.desc(), models.Subscription.id.desc()
    ).offset((page - 1) * limit).limit(limit).all()

    subscriptions = []
    for subscription, group in rows:
        current = subscription.current_members or 0
        subscriptions.append(schemas.PublicSubscription(
            id=subscription.id,
            name=subscription.name,
            service_name=subscription.service_name,
            description=subscription.description,
            total_price=subscription.total_price,
            currency=subscription.currency,
            max_members=subscription.max_members,
            current_members=current,
            renewal_date=subscription.renewal_date,
            created_at=subscription.created_at,
            group=schemas.PublicGroupRef(id=group.id, name=group.name) if group else None,
            price_per_member=price_per_member(subscription.total_price, subscription.max_members),
            available_spots=max(subscription.max_members - current, 0),
            percentage_filled=(current / subscription.max_members) * 100 if subscription.max_members else 0.0
        ))

    return schemas.PublicSubscriptionPage(
        subscriptions=subscriptions,
        pagination=schemas.Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit)
        )
    )


@router.get("/{subscription_id}", response_model=schemas.Subscription)
def get_subscription(
    subscription_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    return get_visible_subscription_or_404(db, subscription_id, current_user.id)


@router.put("/{subscription_id}", response_model=schemas.Subscription)
def update_subscription(
    subscription_id: int,
    subscription_update: schemas.SubscriptionUpdate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = get_owned_subscription_or_404(db, subscription_id, current_user.id)

    changes = subscription_update.model_dump(exclude_unset=True)
    if "max_members" in changes and changes["max_members"] < (subscription.current_members or 0):
        raise HTTPException(status_code=400, detail="max_members cannot be lower than the current member count")

    for field, value in changes.items():
        setattr(subscription, field, value)
    db.commit()
    db.refresh(subscription)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.SUBSCRIPTION_UPDATED,
        entity_type=EntityTypes.SUBSCRIPTION,
        entity_id=subscription.id,
        details={"fields": sorted(changes)},
    )
    db.refresh(subscription)
    return subscription


@router.delete("/{subscription_id}", response_model=schemas.Message)
def delete_subscription(
    subscription_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = get_owned_subscription_or_404(db, subscription_id, current_user.id)
    subscription_name = subscription.name

    # Delete dependents explicitly; SQLite does not enforce ON DELETE CASCADE by default
    expense_ids = [
        e.id for e in db.query(models.Expense.id).filter(models.Expense.subscription_id == subscription_id).all()
    ]
    if expense_ids:
        db.query(models.ExpenseParticipant).filter(
            models.ExpenseParticipant.expense_id.in_(expense_ids)
        ).delete(synchronize_session=False)
    db.query(models.Expense).filter(models.Expense.subscription_id == subscription_id).delete()
    db.query(models.Payment).filter(models.Payment.subscription_id == subscription_id).delete()
    db.query(models.AccessRequest).filter(models.AccessRequest.subscription_id == subscription_id).delete()
    db.query(models.Notification).filter(models.Notification.subscription_id == subscription_id).delete()
    db.query(models.SubscriptionMember).filter(models.SubscriptionMember.subscription_id == subscription_id).delete()
    db.query(models.Subscription).filter(models.Subscription.id == subscription_id).delete()
    db.commit()

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.SUBSCRIPTION_DELETED,
        entity_type=EntityTypes.SUBSCRIPTION,
        entity_id=subscription_id,
        severity=Severity.MEDIUM,
        details={"name": subscription_name},
    )
    return {"message": "Subscription deleted successfully"}


@router.post("/{subscription_id}/password-changed", response_model=schemas.PasswordChangeResult)
def record_password_change(
    subscription_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    """Record that the shared credentials were rotated and tell the other members."""
    subscription = verify_subscription_admin(db, subscription_id, current_user.id)

    subscription.last_password_change = datetime.utcnow()
    db.commit()
    db.refresh(subscription)

    audit_password_changed(db, current_user.id, subscription.id, request)
    notified = NotificationAutomation(db).notify_password_updated(subscription, current_user.id)

    db.refresh(subscription)
    return {
        "message": "Password change recorded",
        "last_password_change": subscription.last_password_change,
        "members_notified": notified
    }
