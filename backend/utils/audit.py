"""Audit trail for security-relevant actions (credential changes, membership, access requests)."""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)


class Actions:
    # Authentication
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_SIGNUP = "user_signup"
    PASSWORD_CHANGED = "password_changed"

    # Credentials
    CREDENTIAL_ACCESSED = "credential_accessed"
    CREDENTIAL_CREATED = "credential_created"
    CREDENTIAL_UPDATED = "credential_updated"
    CREDENTIAL_DELETED = "credential_deleted"

    # Groups
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    GROUP_MEMBER_ADDED = "group_member_added"
    GROUP_MEMBER_REMOVED = "group_member_removed"
    GROUP_INVITE_SENT = "group_invite_sent"

    # Subscriptions
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    SUBSCRIPTION_MEMBER_ADDED = "subscription_member_added"
    SUBSCRIPTION_MEMBER_REMOVED = "subscription_member_removed"

    # Access requests
    ACCESS_REQUEST_CREATED = "access_request_created"
    ACCESS_REQUEST_APPROVED = "access_request_approved"
    ACCESS_REQUEST_REJECTED = "access_request_rejected"

    # Payments
    PAYMENT_CREATED = "payment_created"
    PAYMENT_UPDATED = "payment_updated"


class EntityTypes:
    USER = "user"
    GROUP = "group"
    SUBSCRIPTION = "subscription"
    ACCESS_REQUEST = "access_request"
    PAYMENT = "payment"
    CREDENTIAL = "credential"


class Severity:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    ALL = (LOW, MEDIUM, HIGH, CRITICAL)


ACTION_DESCRIPTIONS = {
    Actions.USER_LOGIN: "Signed in",
    Actions.USER_LOGOUT: "Signed out",
    Actions.USER_SIGNUP: "Account created",
    Actions.PASSWORD_CHANGED: "Password changed",
    Actions.CREDENTIAL_ACCESSED: "Credentials accessed",
    Actions.CREDENTIAL_CREATED: "Credentials created",
    Actions.CREDENTIAL_UPDATED: "Credentials updated",
    Actions.CREDENTIAL_DELETED: "Credentials deleted",
    Actions.GROUP_CREATED: "Group created",
    Actions.GROUP_UPDATED: "Group updated",
    Actions.GROUP_DELETED: "Group deleted",
    Actions.GROUP_MEMBER_ADDED: "Member added to group",
    Actions.GROUP_MEMBER_REMOVED: "Member removed from group",
    Actions.GROUP_INVITE_SENT: "Group invitation sent",
    Actions.SUBSCRIPTION_CREATED: "Subscription created",
    Actions.SUBSCRIPTION_UPDATED: "Subscription updated",
    Actions.SUBSCRIPTION_DELETED: "Subscription deleted",
    Actions.SUBSCRIPTION_MEMBER_ADDED: "Member added to subscription",
    Actions.SUBSCRIPTION_MEMBER_REMOVED: "Member removed from subscription",
    Actions.ACCESS_REQUEST_CREATED: "Access request created",
    Actions.ACCESS_REQUEST_APPROVED: "Access request approved",
    Actions.ACCESS_REQUEST_REJECTED: "Access request rejected",
    Actions.PAYMENT_CREATED: "Payment recorded",
    Actions.PAYMENT_UPDATED: "Payment updated",
}

SEVERITY_LABELS = {
    Severity.LOW: "Low",
    Severity.MEDIUM: "Medium",
    Severity.HIGH: "High",
    Severity.CRITICAL: "Critical",
}


def get_action_description(action: str) -> str:
    return ACTION_DESCRIPTIONS.get(action, action)


def get_severity_label(severity: str) -> str:
    return SEVERITY_LABELS.get(severity, severity)


def parse_user_agent(user_agent: str) -> dict:
    """Very small user agent classifier: browser, OS and device family."""
    result = {}

    # Order matters: Edge and Chrome UAs also mention Safari, Edge mentions Chrome
    if "Edg" in user_agent:
        result["browser"] = "Edge"
    elif "Chrome" in user_agent:
        result["browser"] = "Chrome"
    elif "Firefox" in user_agent:
        result["browser"] = "Firefox"
    elif "Safari" in user_agent:
        result["browser"] = "Safari"

    if "Windows" in user_agent:
        result["os"] = "Windows"
    elif "Android" in user_agent:
        result["os"] = "Android"
    elif "iPhone" in user_agent or "iPad" in user_agent:
        result["os"] = "iOS"
    elif "Mac" in user_agent:
        result["os"] = "macOS"
    elif "Linux" in user_agent:
        result["os"] = "Linux"

    if "Tablet" in user_agent or "iPad" in user_agent:
        result["device"] = "Tablet"
    elif "Mobile" in user_agent:
        result["device"] = "Mobile"
    else:
        result["device"] = "Desktop"

    return result


def get_client_ip(request: Request) -> Optional[str]:
    """
    Get the real client IP.
    Prioritize X-Forwarded-For > X-Real-IP > CF-Connecting-IP > request.client.host
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For: <client>, <proxy1>, <proxy2>
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip

    return request.client.host if request.client else None


class AuditLogger:
    """Writes AuditLog rows. Never raises: a failed audit insert must not break the request."""

    @staticmethod
    def log(
        db: Session,
        action: str,
        entity_type: str,
        user_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
        severity: str = Severity.LOW,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        try:
            db.add(models.AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details,
                severity=severity,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=datetime.utcnow(),
            ))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write audit entry {action} for user {user_id}: {e}")
            return False

    @staticmethod
    def log_with_request(db: Session, request: Request, **entry) -> bool:
        return AuditLogger.log(
            db,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            **entry
        )


def audit_user_login(db: Session, user_id: int, request: Request) -> bool:
    return AuditLogger.log_with_request(
        db, request,
        user_id=user_id,
        action=Actions.USER_LOGIN,
        entity_type=EntityTypes.USER,
        entity_id=user_id,
        severity=Severity.LOW,
    )


def audit_password_changed(db: Session, user_id: int, subscription_id: int, request: Request) -> bool:
    return AuditLogger.log_with_request(
        db, request,
        user_id=user_id,
        action=Actions.CREDENTIAL_UPDATED,
        entity_type=EntityTypes.SUBSCRIPTION,
        entity_id=subscription_id,
        severity=Severity.HIGH,
        details={"password_changed": True},
    )


def audit_member_added(
    db: Session,
    user_id: int,
    target_user_id: int,
    entity_type: str,
    entity_id: int,
    request: Request
) -> bool:
    is_group = entity_type == EntityTypes.GROUP
    return AuditLogger.log_with_request(
        db, request,
        user_id=user_id,
        action=Actions.GROUP_MEMBER_ADDED if is_group else Actions.SUBSCRIPTION_MEMBER_ADDED,
        entity_type=EntityTypes.GROUP if is_group else EntityTypes.SUBSCRIPTION,
        entity_id=entity_id,
        severity=Severity.MEDIUM,
        details={"target_user_id": target_user_id, "added_at": datetime.utcnow().isoformat()},
    )


def audit_access_request_processed(
    db: Session,
    user_id: int,
    request_id: int,
    approved: bool,
    request: Request
) -> bool:
    return AuditLogger.log_with_request(
        db, request,
        user_id=user_id,
        action=Actions.ACCESS_REQUEST_APPROVED if approved else Actions.ACCESS_REQUEST_REJECTED,
        entity_type=EntityTypes.ACCESS_REQUEST,
        entity_id=request_id,
        severity=Severity.MEDIUM,
        details={"approved": approved, "processed_at": datetime.utcnow().isoformat()},
    )
