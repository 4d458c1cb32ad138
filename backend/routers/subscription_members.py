"""Subscription members router. current_members always equals the number of member rows."""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, Severity, audit_member_added
from utils.validation import (
    get_subscription_member, get_user_or_404, is_subscription_full, release_subscription_spot,
    reserve_subscription_spot, verify_subscription_access, verify_subscription_admin,
    verify_subscription_ownership
)


router = APIRouter(prefix="/subscriptions/{subscription_id}", tags=["subscription members"])


def to_member_schema(member: models.SubscriptionMember, user: models.User) -> schemas.SubscriptionMember:
    return schemas.SubscriptionMember(
        id=member.id,
        user_id=user.id,
        full_name=user.full_name or user.email,
        email=user.email,
        role=member.role,
        joined_at=member.joined_at,
        last_payment=member.last_payment,
        next_payment_due=member.next_payment_due
    )


@router.get("/members", response_model=list[schemas.SubscriptionMember])
def list_subscription_members(
    subscription_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    verify_subscription_access(db, subscription_id, current_user.id)

    rows = db.query(models.SubscriptionMember, models.User).join(
        models.User, models.SubscriptionMember.user_id == models.User.id
    ).filter(
        models.SubscriptionMember.subscription_id == subscription_id
    ).order_by(models.SubscriptionMember.joined_at, models.SubscriptionMember.id).all()

    return [to_member_schema(member, user) for member, user in rows]


@router.post("/members", response_model=schemas.SubscriptionMember, status_code=201)
def add_subscription_member(
    subscription_id: int,
    member_add: schemas.SubscriptionMemberAdd,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = verify_subscription_admin(db, subscription_id, current_user.id)
    user = get_user_or_404(db, member_add.user_id)

    if get_subscription_member(db, subscription_id, user.id):
        raise HTTPException(status_code=400, detail="User is already a member of this subscription")
    if is_subscription_full(subscription):
        raise HTTPException(status_code=400, detail="Subscription is full")

    member = models.SubscriptionMember(subscription_id=subscription_id, user_id=user.id, role=member_add.role)
    reserve_subscription_spot(db, subscription_id)
    db.add(member)
    db.commit()
    db.refresh(member)

    audit_member_added(db, current_user.id, user.id, EntityTypes.SUBSCRIPTION, subscription_id, request)
    return to_member_schema(member, user)


@router.put("/members/{user_id}", response_model=schemas.SubscriptionMember)
def update_subscription_member_role(
    subscription_id: int,
    user_id: int,
    role_update: schemas.MemberRoleUpdate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = verify_subscription_ownership(db, subscription_id, current_user.id)

    if user_id == subscription.owner_id:
        raise HTTPException(status_code=400, detail="The subscription owner's role cannot be changed")

    member = get_subscription_member(db, subscription_id, user_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this subscription")

    member.role = role_update.role
    db.commit()
    db.refresh(member)
    return to_member_schema(member, get_user_or_404(db, user_id))


@router.delete("/members/{user_id}", response_model=schemas.Message)
def remove_subscription_member(
    subscription_id: int,
    user_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = verify_subscription_access(db, subscription_id, current_user.id)

    if current_user.id != subscription.owner_id and current_user.id != user_id:
        raise HTTPException(status_code=403, detail="You can only remove yourself from the subscription")

    if user_id == subscription.owner_id:
        raise HTTPException(status_code=400, detail="Subscription owner cannot be removed. Delete the subscription instead.")

    member = get_subscription_member(db, subscription_id, user_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this subscription")

    db.delete(member)
    release_subscription_spot(db, subscription_id)
    db.commit()

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.SUBSCRIPTION_MEMBER_REMOVED,
        entity_type=EntityTypes.SUBSCRIPTION,
        entity_id=subscription_id,
        severity=Severity.MEDIUM,
        details={"target_user_id": user_id},
    )
    return {"message": "Member removed successfully"}
