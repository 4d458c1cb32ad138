"""In-app notifications and the periodic checks that generate them."""

import calendar
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

import models
from utils.dates import to_naive_utc

logger = logging.getLogger(__name__)

EXPIRY_WINDOW_DAYS = 7
PASSWORD_ROTATION_MONTHS = 3
# An identical unread notification created within this window is not repeated
DEDUP_WINDOW = timedelta(hours=24)


@dataclass
class NotificationPayload:
    user_id: int
    title: str
    message: str
    type: str
    subscription_id: Optional[int] = None
    related_entity_id: Optional[int] = None
    related_entity_type: Optional[str] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    scheduled_for: Optional[datetime] = None


def months_ago(now: datetime, months: int) -> datetime:
    """Same day-of-month `months` earlier, clamped to the end of shorter months."""
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days until target, rounding any partial day up."""
    return math.ceil((target - now).total_seconds() / 86400)


def expiry_urgency(days: int) -> str:
    if days <= 1:
        return "URGENT"
    if days <= 3:
        return "IMPORTANT"
    return ""


class NotificationAutomation:
    """
    Creates notification rows for subscription events.

    Event hooks (access request created / answered) are called from the routers.
    The periodic checks are run by POST /notifications/automation or run_automation.py.
    """

    def __init__(self, db: Session):
        self.db = db

    def _is_duplicate(self, payload: NotificationPayload, now: datetime) -> bool:
        return self.db.query(models.Notification).filter(
            models.Notification.user_id == payload.user_id,
            models.Notification.type == payload.type,
            models.Notification.related_entity_id == payload.related_entity_id,
            models.Notification.title == payload.title,
            models.Notification.is_read == False,
            models.Notification.created_at >= now - DEDUP_WINDOW
        ).first() is not None

    def create_notification(self, payload: NotificationPayload) -> models.Notification:
        now = datetime.utcnow()
        notification = models.Notification(**asdict(payload), is_read=False, sent_at=now, created_at=now)
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def create_bulk_notifications(self, payloads: list[NotificationPayload], now: Optional[datetime] = None, dedupe: bool = False) -> int:
        """Insert notifications in one commit. Returns how many rows were created."""
        if not payloads:
            return 0

        now = to_naive_utc(now) or datetime.utcnow()
        created = 0
        for payload in payloads:
            if dedupe and self._is_duplicate(payload, now):
                continue
            self.db.add(models.Notification(**asdict(payload), is_read=False, sent_at=now, created_at=now))
            created += 1

        self.db.commit()
        return created

    def notify_new_access_request(self, request_id: int) -> int:
        """Tell the subscription owner and its admins that someone asked to join."""
        row = self.db.query(models.AccessRequest, models.User, models.Subscription).join(
            models.User, models.AccessRequest.user_id == models.User.id
        ).join(
            models.Subscription, models.AccessRequest.subscription_id == models.Subscription.id
        ).filter(models.AccessRequest.id == request_id).first()

        if not row:
            return 0

        access_request, requester, subscription = row
        requester_name = requester.full_name or requester.email

        admin_ids = [
            m.user_id for m in self.db.query(models.SubscriptionMember).filter(
                models.SubscriptionMember.subscription_id == subscription.id,
                models.SubscriptionMember.role == "admin"
            ).all()
        ]
        recipients = [subscription.owner_id] + [uid for uid in admin_ids if uid != subscription.owner_id]

        payloads = [
            NotificationPayload(
                user_id=user_id,
                subscription_id=subscription.id,
                title="New access request",
                message=f'{requester_name} asked to join the subscription "{subscription.name}".',
                type="access_request_created",
                related_entity_id=access_request.id,
                related_entity_type="access_request",
                action_url=f"/subscriptions/{subscription.id}/requests",
                action_text="Review Request",
            )
            for user_id in recipients
        ]
        return self.create_bulk_notifications(payloads)

    def notify_access_request_response(self, request_id: int, approved: bool) -> int:
        """Tell the requester whether their access request was approved or rejected."""
        row = self.db.query(models.AccessRequest, models.Subscription).join(
            models.Subscription, models.AccessRequest.subscription_id == models.Subscription.id
        ).filter(models.AccessRequest.id == request_id).first()

        if not row:
            return 0

        access_request, subscription = row
        status = "approved" if approved else "rejected"

        return self.create_bulk_notifications([NotificationPayload(
            user_id=access_request.user_id,
            subscription_id=subscription.id,
            title=f"Request {status}",
            message=f'Your request to join the subscription "{subscription.name}" was {status}.',
            type="access_request_approved" if approved else "access_request_rejected",
            related_entity_id=access_request.id,
            related_entity_type="access_request",
            action_url=f"/subscriptions/{subscription.id}" if approved else "/subscriptions/public",
            action_text="View Subscription" if approved else "Find Others",
        )])

    def notify_password_updated(self, subscription: models.Subscription, changed_by_id: int) -> int:
        """Tell every other member that the shared password changed."""
        members = self.db.query(models.SubscriptionMember).filter(
            models.SubscriptionMember.subscription_id == subscription.id,
            models.SubscriptionMember.user_id != changed_by_id
        ).all()

        payloads = [
            NotificationPayload(
                user_id=member.user_id,
                subscription_id=subscription.id,
                title=f"Password updated - {subscription.name}",
                message="The subscription password was updated. Check the shared credentials for the new password.",
                type="password_updated",
                related_entity_id=subscription.id,
                related_entity_type="subscription",
            )
            for member in members
        ]
        return self.create_bulk_notifications(payloads)

    def check_expiring_subscriptions(self, now: Optional[datetime] = None) -> int:
        """Warn owners and members about subscriptions renewing within the next 7 days."""
        now = to_naive_utc(now) or datetime.utcnow()
        window_end = now + timedelta(days=EXPIRY_WINDOW_DAYS)

        expiring = self.db.query(models.Subscription).filter(
            models.Subscription.is_active == True,
            models.Subscription.renewal_date >= now,
            models.Subscription.renewal_date < window_end
        ).all()

        payloads = []
        for subscription in expiring:
            days = days_until(subscription.renewal_date, now)
            urgency = expiry_urgency(days)
            title = f"{urgency + ': ' if urgency else ''}Renewal coming up"

            payloads.append(NotificationPayload(
                user_id=subscription.owner_id,
                subscription_id=subscription.id,
                title=title,
                message=f'The subscription "{subscription.name}" expires in {days} day(s). Renew it to keep access.',
                type="subscription_expiring",
                related_entity_id=subscription.id,
                related_entity_type="subscription",
                action_url=f"/subscriptions/{subscription.id}/renew",
                action_text="Renew Now",
            ))

            members = self.db.query(models.SubscriptionMember).filter(
                models.SubscriptionMember.subscription_id == subscription.id,
                models.SubscriptionMember.user_id != subscription.owner_id
            ).all()
            for member in members:
                payloads.append(NotificationPayload(
                    user_id=member.user_id,
                    subscription_id=subscription.id,
                    title=title,
                    message=f'The subscription "{subscription.name}" expires in {days} day(s).',
                    type="subscription_expiring_member",
                    related_entity_id=subscription.id,
                    related_entity_type="subscription",
                    action_url=f"/subscriptions/{subscription.id}",
                    action_text="View Details",
                ))

        return self.create_bulk_notifications(payloads, now=now, dedupe=True)

    def check_overdue_payments(self, now: Optional[datetime] = None) -> int:
        """Remind members whose next payment due date has passed."""
        now = to_naive_utc(now) or datetime.utcnow()

        overdue = self.db.query(models.SubscriptionMember, models.Subscription).join(
            models.Subscription, models.SubscriptionMember.subscription_id == models.Subscription.id
        ).filter(
            models.SubscriptionMember.next_payment_due < now,
            models.Subscription.is_active == True
        ).all()

        payloads = [
            NotificationPayload(
                user_id=member.user_id,
                subscription_id=subscription.id,
                title="Payment overdue",
                message=f'Your payment for the subscription "{subscription.name}" is overdue.',
                type="payment_overdue",
                related_entity_id=subscription.id,
                related_entity_type="subscription",
                action_url=f"/subscriptions/{subscription.id}/payment",
                action_text="Pay Now",
            )
            for member, subscription in overdue
        ]
        return self.create_bulk_notifications(payloads, now=now, dedupe=True)

    def check_password_rotation(self, now: Optional[datetime] = None) -> int:
        """Ask owners to rotate passwords that have not changed in 3 months."""
        now = to_naive_utc(now) or datetime.utcnow()
        cutoff = months_ago(now, PASSWORD_ROTATION_MONTHS)

        stale = self.db.query(models.Subscription).filter(
            models.Subscription.is_active == True,
            models.Subscription.last_password_change != None,
            models.Subscription.last_password_change < cutoff
        ).all()

        payloads = [
            NotificationPayload(
                user_id=subscription.owner_id,
                subscription_id=subscription.id,
                title="Password change recommended",
                message=f'Changing the password of the subscription "{subscription.name}" is recommended for security.',
                type="password_rotation_needed",
                related_entity_id=subscription.id,
                related_entity_type="subscription",
                action_url=f"/subscriptions/{subscription.id}/credentials",
                action_text="Update Password",
            )
            for subscription in stale
        ]
        return self.create_bulk_notifications(payloads, now=now, dedupe=True)

    def run_all_checks(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Run every periodic check. Checks are independent: any error in one is logged,
        rolled back and reported as -1 without stopping the others.
        """
        now = to_naive_utc(now) or datetime.utcnow()
        checks = {
            "expiring_subscriptions": self.check_expiring_subscriptions,
            "overdue_payments": self.check_overdue_payments,
            "password_rotation": self.check_password_rotation,
        }

        results = {}
        for name, check in checks.items():
            try:
                results[name] = check(now)
            except Exception:
                self.db.rollback()
                logger.exception(f"Notification check {name} failed")
                results[name] = -1
            else:
                logger.info(f"Notification check {name} created {results[name]} notification(s)")

        return results
