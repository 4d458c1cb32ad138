"""Groups router: create, read, update, delete groups; invitations and joining."""

from datetime import datetime
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

import models
import schemas
import auth
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, Severity
from utils.email import send_group_invite_email
from utils.notifications import NotificationAutomation, NotificationPayload
from utils.validation import (
    get_group_or_404, get_group_member, verify_group_membership, verify_group_admin,
    verify_group_ownership, ensure_group_has_room, get_user_by_email
)


router = APIRouter(prefix="/groups", tags=["groups"])


def new_invite_code(db: Session) -> str:
    while True:
        code = auth.generate_invite_code()
        if not db.query(models.Group).filter(models.Group.invite_code == code).first():
            return code


def group_members(db: Session, group_id: int) -> list[schemas.GroupMember]:
    members_query = db.query(models.GroupMember, models.User).join(
        models.User, models.GroupMember.user_id == models.User.id
    ).filter(models.GroupMember.group_id == group_id).order_by(models.GroupMember.joined_at).all()

    return [
        schemas.GroupMember(
            id=gm.id,
            user_id=user.id,
            full_name=user.full_name or user.email,
            email=user.email,
            role=gm.role,
            joined_at=gm.joined_at
        )
        for gm, user in members_query
    ]


@router.post("", response_model=schemas.Group)
def create_group(
    group: schemas.GroupCreate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    db_group = models.Group(
        name=group.name,
        description=group.description,
        max_members=group.max_members,
        owner_id=current_user.id,
        invite_code=new_invite_code(db)
    )
    db.add(db_group)
    db.commit()
    db.refresh(db_group)

    # Creator joins as admin
    db_member = models.GroupMember(group_id=db_group.id, user_id=current_user.id, role="admin")
    db.add(db_member)
    db.commit()

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_CREATED,
        entity_type=EntityTypes.GROUP,
        entity_id=db_group.id,
        details={"name": db_group.name},
    )
    db.refresh(db_group)
    return db_group


@router.get("", response_model=list[schemas.GroupSummary])
def read_groups(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    user_groups = db.query(models.Group, models.GroupMember.role).join(
        models.GroupMember,
        models.Group.id == models.GroupMember.group_id
    ).filter(
        models.GroupMember.user_id == current_user.id
    ).order_by(models.Group.created_at.desc()).all()

    group_ids = [g.id for g, _ in user_groups]
    counts = dict(
        db.query(models.GroupMember.group_id, func.count(models.GroupMember.id)).filter(
            models.GroupMember.group_id.in_(group_ids)
        ).group_by(models.GroupMember.group_id).all()
    ) if group_ids else {}

    return [
        schemas.GroupSummary(
            **schemas.Group.model_validate(g).model_dump(),
            role=role,
            member_count=counts.get(g.id, 0)
        )
        for g, role in user_groups
    ]


@router.get("/{group_id}", response_model=schemas.GroupWithMembers)
def get_group(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_membership(db, group_id, current_user.id)

    return schemas.GroupWithMembers(
        **schemas.Group.model_validate(group).model_dump(),
        members=group_members(db, group_id)
    )


@router.put("/{group_id}", response_model=schemas.Group)
def update_group(
    group_id: int,
    group_update: schemas.GroupUpdate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_ownership(db, group_id, current_user.id)

    changes = group_update.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(group, field, value)
    db.commit()
    db.refresh(group)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_UPDATED,
        entity_type=EntityTypes.GROUP,
        entity_id=group.id,
        details={"fields": sorted(changes)},
    )
    return group


@router.delete("/{group_id}", response_model=schemas.Message)
def delete_group(
    group_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_ownership(db, group_id, current_user.id)
    group_name = group.name

    # Keep the subscriptions, detached from the group
    db.query(models.Subscription).filter(models.Subscription.group_id == group_id).update({"group_id": None})

    db.query(models.GroupMember).filter(models.GroupMember.group_id == group_id).delete()
    db.query(models.Group).filter(models.Group.id == group_id).delete()
    db.commit()

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_DELETED,
        entity_type=EntityTypes.GROUP,
        entity_id=group_id,
        severity=Severity.MEDIUM,
        details={"name": group_name},
    )
    return {"message": "Group deleted successfully"}


@router.post("/{group_id}/invite", response_model=schemas.GroupInviteResult)
def invite_to_group(
    group_id: int,
    invite: schemas.GroupInvite,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_admin(db, group_id, current_user.id)
    ensure_group_has_room(db, group)

    invited_user = get_user_by_email(db, invite.email)
    if not invited_user:
        raise HTTPException(status_code=404, detail="User not found")

    if get_group_member(db, group_id, invited_user.id):
        raise HTTPException(status_code=400, detail="User is already a member of this group")

    inviter_name = current_user.full_name or current_user.email
    message = f'{inviter_name} invited you to join the group "{group.name}".'
    if invite.message:
        message += f"\n\n{invite.message}"

    notification = NotificationAutomation(db).create_notification(NotificationPayload(
        user_id=invited_user.id,
        title="Group invitation",
        message=message,
        type="group_invite",
        related_entity_id=group.id,
        related_entity_type="group",
        action_url=f"/groups/{group.id}/join?code={group.invite_code}",
        action_text="Join Group",
    ))

    # Plain def route: the blocking Brevo call runs in the threadpool
    email_sent = send_group_invite_email(
        to_email=invited_user.email,
        to_name=invited_user.full_name,
        from_name=inviter_name,
        group_name=group.name,
        invite_code=group.invite_code,
        group_id=group.id,
        message=invite.message
    )

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_INVITE_SENT,
        entity_type=EntityTypes.GROUP,
        entity_id=group.id,
        details={"invited_user_id": invited_user.id, "role": invite.role},
    )

    return {
        "message": "Invitation sent",
        "notification_id": notification.id,
        "email_sent": email_sent
    }


@router.post("/{group_id}/join", response_model=schemas.GroupMember)
def join_group(
    group_id: int,
    join: schemas.GroupJoin,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = get_group_or_404(db, group_id)

    if not group.is_active:
        raise HTTPException(status_code=400, detail="Group is not active")
    if group.invite_code != join.invite_code.strip().upper():
        raise HTTPException(status_code=400, detail="Invalid invite code")
    if get_group_member(db, group_id, current_user.id):
        raise HTTPException(status_code=400, detail="You are already a member of this group")
    ensure_group_has_room(db, group)

    member = models.GroupMember(group_id=group_id, user_id=current_user.id, role="member")
    db.add(member)

    # The invitation has been acted on
    db.query(models.Notification).filter(
        models.Notification.user_id == current_user.id,
        models.Notification.type == "group_invite",
        models.Notification.related_entity_id == group_id,
        models.Notification.is_read == False
    ).update({"is_read": True, "read_at": datetime.utcnow()})

    db.commit()
    db.refresh(member)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_MEMBER_ADDED,
        entity_type=EntityTypes.GROUP,
        entity_id=group_id,
        severity=Severity.MEDIUM,
        details={"target_user_id": current_user.id, "via": "invite_code"},
    )

    return schemas.GroupMember(
        id=member.id,
        user_id=current_user.id,
        full_name=current_user.full_name or current_user.email,
        email=current_user.email,
        role=member.role,
        joined_at=member.joined_at
    )
