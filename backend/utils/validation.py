"""Validation utilities for group and subscription membership and access control."""

from sqlalchemy.orm import Session
from fastapi import HTTPException

import models


def get_user_by_email(db: Session, email: str):
    """Get a user by their email address."""
    return db.query(models.User).filter(models.User.email == email).first()


def get_user_or_404(db: Session, user_id: int):
    """Get a user by ID or raise 404 if not found."""
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_group_or_404(db: Session, group_id: int):
    """Get a group by ID or raise 404 if not found."""
    group = db.query(models.Group).filter(models.Group.id == group_id).first()
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def get_group_member(db: Session, group_id: int, user_id: int):
    return db.query(models.GroupMember).filter(
        models.GroupMember.group_id == group_id,
        models.GroupMember.user_id == user_id
    ).first()


def count_group_members(db: Session, group_id: int) -> int:
    return db.query(models.GroupMember).filter(models.GroupMember.group_id == group_id).count()


def verify_group_membership(db: Session, group_id: int, user_id: int):
    """Verify that a user is the owner or a member of a group, raise 403 if not."""
    group = get_group_or_404(db, group_id)
    member = get_group_member(db, group_id, user_id)
    if not member and group.owner_id != user_id:
        raise HTTPException(status_code=403, detail="You are not a member of this group")
    return group


def verify_group_admin(db: Session, group_id: int, user_id: int):
    """Verify that a user is the owner or an admin member of a group, raise 403 if not."""
    group = get_group_or_404(db, group_id)
    if group.owner_id == user_id:
        return group
    member = get_group_member(db, group_id, user_id)
    if not member or member.role != "admin":
        raise HTTPException(status_code=403, detail="Only group owners and admins can perform this action")
    return group


def verify_group_ownership(db: Session, group_id: int, user_id: int):
    """Verify that a user owns a group, raise 403 if not."""
    group = get_group_or_404(db, group_id)
    if group.owner_id != user_id:
        raise HTTPException(status_code=403, detail="Only the group owner can perform this action")
    return group


def ensure_group_has_room(db: Session, group: models.Group):
    """Raise 400 if the group already holds max_members members."""
    if group.max_members and count_group_members(db, group.id) >= group.max_members:
        raise HTTPException(status_code=400, detail="Group is full")


def get_subscription_or_404(db: Session, subscription_id: int):
    """Get a subscription by ID or raise 404 if not found."""
    subscription = db.query(models.Subscription).filter(models.Subscription.id == subscription_id).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


def get_subscription_member(db: Session, subscription_id: int, user_id: int):
    return db.query(models.SubscriptionMember).filter(
        models.SubscriptionMember.subscription_id == subscription_id,
        models.SubscriptionMember.user_id == user_id
    ).first()


def verify_subscription_access(db: Session, subscription_id: int, user_id: int):
    """Verify that a user is the owner or a member of a subscription, raise 403 if not."""
    subscription = get_subscription_or_404(db, subscription_id)
    if subscription.owner_id != user_id and not get_subscription_member(db, subscription_id, user_id):
        raise HTTPException(status_code=403, detail="You are not a member of this subscription")
    return subscription


def verify_subscription_admin(db: Session, subscription_id: int, user_id: int):
    """Verify that a user is the owner or an admin member of a subscription, raise 403 if not."""
    subscription = get_subscription_or_404(db, subscription_id)
    if subscription.owner_id == user_id:
        return subscription
    member = get_subscription_member(db, subscription_id, user_id)
    if not member or member.role != "admin":
        raise HTTPException(status_code=403, detail="Only subscription owners and admins can perform this action")
    return subscription


def verify_subscription_ownership(db: Session, subscription_id: int, user_id: int):
    """Verify that a user owns a subscription, raise 403 if not."""
    subscription = get_subscription_or_404(db, subscription_id)
    if subscription.owner_id != user_id:
        raise HTTPException(status_code=403, detail="Only the subscription owner can perform this action")
    return subscription


def get_visible_subscription_or_404(db: Session, subscription_id: int, user_id: int):
    """Like verify_subscription_access, but hides the subscription's existence from outsiders."""
    subscription = get_subscription_or_404(db, subscription_id)
    if subscription.owner_id != user_id and not get_subscription_member(db, subscription_id, user_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


def get_owned_subscription_or_404(db: Session, subscription_id: int, user_id: int):
    """Get a subscription owned by the user, or 404."""
    subscription = db.query(models.Subscription).filter(
        models.Subscription.id == subscription_id,
        models.Subscription.owner_id == user_id
    ).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


def is_subscription_full(subscription: models.Subscription) -> bool:
    return bool(subscription.max_members) and (subscription.current_members or 0) >= subscription.max_members


def reserve_subscription_spot(db: Session, subscription_id: int):
    """Increment current_members in the database only while there is room, else 400."""
    updated = db.query(models.Subscription).filter(
        models.Subscription.id == subscription_id,
        models.Subscription.current_members < models.Subscription.max_members
    ).update(
        {"current_members": models.Subscription.current_members + 1},
        synchronize_session=False
    )
    if not updated:
        db.rollback()
        raise HTTPException(status_code=400, detail="Subscription is full")


def release_subscription_spot(db: Session, subscription_id: int):
    db.query(models.Subscription).filter(
        models.Subscription.id == subscription_id,
        models.Subscription.current_members > 0
    ).update(
        {"current_members": models.Subscription.current_members - 1},
        synchronize_session=False
    )
