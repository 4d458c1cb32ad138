"""Members router: manage group members and their roles."""

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, Severity, audit_member_added
from utils.validation import (
    get_group_or_404, get_group_member, get_user_or_404, verify_group_membership,
    verify_group_admin, verify_group_ownership, ensure_group_has_room
)
from routers.groups import group_members


router = APIRouter(prefix="/groups/{group_id}", tags=["members"])


@router.get("/members", response_model=list[schemas.GroupMember])
def list_group_members(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    verify_group_membership(db, group_id, current_user.id)
    return group_members(db, group_id)


@router.post("/members", response_model=schemas.GroupMember, status_code=201)
def add_group_member(
    group_id: int,
    member_add: schemas.GroupMemberAdd,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_admin(db, group_id, current_user.id)
    user = get_user_or_404(db, member_add.user_id)

    if get_group_member(db, group_id, user.id):
        raise HTTPException(status_code=400, detail="User is already a member of this group")
    ensure_group_has_room(db, group)

    new_member = models.GroupMember(group_id=group_id, user_id=user.id, role=member_add.role)
    db.add(new_member)
    db.commit()
    db.refresh(new_member)

    audit_member_added(db, current_user.id, user.id, EntityTypes.GROUP, group_id, request)

    return schemas.GroupMember(
        id=new_member.id,
        user_id=user.id,
        full_name=user.full_name or user.email,
        email=user.email,
        role=new_member.role,
        joined_at=new_member.joined_at
    )


@router.put("/members/{user_id}", response_model=schemas.GroupMember)
def update_group_member_role(
    group_id: int,
    user_id: int,
    role_update: schemas.MemberRoleUpdate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = verify_group_ownership(db, group_id, current_user.id)

    if user_id == group.owner_id:
        raise HTTPException(status_code=400, detail="The group owner's role cannot be changed")

    member = get_group_member(db, group_id, user_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this group")

    member.role = role_update.role
    db.commit()
    db.refresh(member)

    user = get_user_or_404(db, user_id)
    return schemas.GroupMember(
        id=member.id,
        user_id=user.id,
        full_name=user.full_name or user.email,
        email=user.email,
        role=member.role,
        joined_at=member.joined_at
    )


@router.delete("/members/{user_id}", response_model=schemas.Message)
def remove_group_member(
    group_id: int,
    user_id: int,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    group = get_group_or_404(db, group_id)
    verify_group_membership(db, group_id, current_user.id)

    # Owner can remove anyone except themselves
    # Non-owners can only remove themselves
    if current_user.id != group.owner_id and current_user.id != user_id:
        raise HTTPException(status_code=403, detail="You can only remove yourself from the group")

    if user_id == group.owner_id:
        raise HTTPException(status_code=400, detail="Group owner cannot be removed. Delete the group instead.")

    member = get_group_member(db, group_id, user_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this group")

    db.delete(member)
    db.commit()

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.GROUP_MEMBER_REMOVED,
        entity_type=EntityTypes.GROUP,
        entity_id=group_id,
        severity=Severity.MEDIUM,
        details={"target_user_id": user_id},
    )
    return {"message": "Member removed successfully"}
