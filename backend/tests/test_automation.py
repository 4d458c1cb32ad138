from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

import models
from conftest import make_user
from utils.notifications import NotificationAutomation, days_until, expiry_urgency, months_ago

NOW = datetime(2026, 5, 15, 12, 0, 0)


@pytest.fixture
def owner(db_session):
    return make_user(db_session, "owner@example.com", "Owner")


@pytest.fixture
def member(db_session):
    return make_user(db_session, "member@example.com", "Member")


def add_subscription(db_session, owner, members=(), **fields):
    values = {
        "name": "Shared Spotify",
        "service_name": "Spotify",
        "total_price": 3490,
        "max_members": 6,
        "renewal_date": NOW + timedelta(days=30),
        "current_members": 1 + len(members),
    }
    values.update(fields)
    subscription = models.Subscription(owner_id=owner.id, **values)
    db_session.add(subscription)
    db_session.flush()
    db_session.add(models.SubscriptionMember(subscription_id=subscription.id, user_id=owner.id, role="admin"))
    for user in members:
        db_session.add(models.SubscriptionMember(subscription_id=subscription.id, user_id=user.id, role="member"))
    db_session.commit()
    return subscription


def notifications(db_session, **filters):
    query = db_session.query(models.Notification)
    for field, value in filters.items():
        query = query.filter(getattr(models.Notification, field) == value)
    return query.all()


class TestHelpers:
    def test_months_ago(self):
        assert months_ago(datetime(2026, 5, 15), 3) == datetime(2026, 2, 15)
        assert months_ago(datetime(2026, 2, 10), 3) == datetime(2025, 11, 10)
        # Clamped to the end of a shorter month
        assert months_ago(datetime(2026, 5, 31), 3) == datetime(2026, 2, 28)

    def test_days_until_rounds_up(self):
        assert days_until(NOW + timedelta(hours=1), NOW) == 1
        assert days_until(NOW + timedelta(days=2, minutes=1), NOW) == 3
        assert days_until(NOW, NOW) == 0

    def test_expiry_urgency(self):
        assert expiry_urgency(0) == "URGENT"
        assert expiry_urgency(1) == "URGENT"
        assert expiry_urgency(2) == "IMPORTANT"
        assert expiry_urgency(3) == "IMPORTANT"
        assert expiry_urgency(4) == ""


class TestExpiringSubscriptions:
    def test_owner_and_members_notified(self, db_session, owner, member):
        sub = add_subscription(db_session, owner, [member], renewal_date=NOW + timedelta(days=5))

        created = NotificationAutomation(db_session).check_expiring_subscriptions(NOW)
        assert created == 2

        owner_note = notifications(db_session, user_id=owner.id)
        assert [n.type for n in owner_note] == ["subscription_expiring"]
        assert owner_note[0].title == "Renewal coming up"
        assert "5 day(s)" in owner_note[0].message
        assert owner_note[0].related_entity_id == sub.id

        member_note = notifications(db_session, user_id=member.id)
        assert [n.type for n in member_note] == ["subscription_expiring_member"]

    @pytest.mark.parametrize("delta, prefix", [
        (timedelta(hours=20), "URGENT: "),
        (timedelta(days=3), "IMPORTANT: "),
        (timedelta(days=6), ""),
    ])
    def test_urgency_prefix(self, db_session, owner, delta, prefix):
        add_subscription(db_session, owner, renewal_date=NOW + delta)
        NotificationAutomation(db_session).check_expiring_subscriptions(NOW)
        assert notifications(db_session, user_id=owner.id)[0].title == f"{prefix}Renewal coming up"

    def test_outside_window_or_inactive_ignored(self, db_session, owner):
        add_subscription(db_session, owner, renewal_date=NOW + timedelta(days=7))
        add_subscription(db_session, owner, renewal_date=NOW - timedelta(hours=1))
        add_subscription(db_session, owner, renewal_date=NOW + timedelta(days=2), is_active=False)

        assert NotificationAutomation(db_session).check_expiring_subscriptions(NOW) == 0

    def test_rerun_does_not_duplicate(self, db_session, owner, member):
        add_subscription(db_session, owner, [member], renewal_date=NOW + timedelta(days=5))
        automation = NotificationAutomation(db_session)

        assert automation.check_expiring_subscriptions(NOW) == 2
        assert automation.check_expiring_subscriptions(NOW + timedelta(hours=1)) == 0
        assert len(notifications(db_session)) == 2

    def test_read_notification_can_be_repeated(self, db_session, owner):
        add_subscription(db_session, owner, renewal_date=NOW + timedelta(days=5))
        automation = NotificationAutomation(db_session)
        automation.check_expiring_subscriptions(NOW)

        for n in notifications(db_session):
            n.is_read = True
        db_session.commit()

        assert automation.check_expiring_subscriptions(NOW + timedelta(hours=1)) == 1


class TestOverduePayments:
    def test_overdue_member_notified(self, db_session, owner, member):
        sub = add_subscription(db_session, owner, [member])
        membership = db_session.query(models.SubscriptionMember).filter(
            models.SubscriptionMember.user_id == member.id
        ).one()
        membership.next_payment_due = NOW - timedelta(days=2)
        db_session.commit()

        assert NotificationAutomation(db_session).check_overdue_payments(NOW) == 1
        note = notifications(db_session, user_id=member.id)[0]
        assert note.type == "payment_overdue"
        assert note.action_url == f"/subscriptions/{sub.id}/payment"

    def test_future_due_date_ignored(self, db_session, owner, member):
        add_subscription(db_session, owner, [member])
        db_session.query(models.SubscriptionMember).update({"next_payment_due": NOW + timedelta(days=1)})
        db_session.commit()

        assert NotificationAutomation(db_session).check_overdue_payments(NOW) == 0


class TestPasswordRotation:
    def test_stale_password_notifies_owner_only(self, db_session, owner, member):
        add_subscription(db_session, owner, [member], last_password_change=NOW - timedelta(days=120))

        assert NotificationAutomation(db_session).check_password_rotation(NOW) == 1
        note = notifications(db_session)[0]
        assert note.user_id == owner.id
        assert note.type == "password_rotation_needed"

    def test_recent_or_unknown_password_ignored(self, db_session, owner):
        add_subscription(db_session, owner, last_password_change=NOW - timedelta(days=30))
        add_subscription(db_session, owner, last_password_change=None)

        assert NotificationAutomation(db_session).check_password_rotation(NOW) == 0


class TestRunAllChecks:
    def test_counts_per_check(self, db_session, owner, member):
        add_subscription(
            db_session, owner, [member],
            renewal_date=NOW + timedelta(days=1),
            last_password_change=NOW - timedelta(days=100)
        )
        db_session.query(models.SubscriptionMember).filter(
            models.SubscriptionMember.user_id == member.id
        ).update({"next_payment_due": NOW - timedelta(days=1)})
        db_session.commit()

        results = NotificationAutomation(db_session).run_all_checks(NOW)
        assert results == {
            "expiring_subscriptions": 2,
            "overdue_payments": 1,
            "password_rotation": 1,
        }

    def test_failing_check_does_not_stop_others(self, db_session, owner):
        add_subscription(db_session, owner, last_password_change=NOW - timedelta(days=100))
        automation = NotificationAutomation(db_session)

        with patch.object(
            automation, "check_expiring_subscriptions",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked"))
        ):
            results = automation.run_all_checks(NOW)

        assert results["expiring_subscriptions"] == -1
        assert results["overdue_payments"] == 0
        assert results["password_rotation"] == 1


class TestAccessRequestEvents:
    def test_missing_request_is_ignored(self, db_session):
        automation = NotificationAutomation(db_session)
        assert automation.notify_new_access_request(999) == 0
        assert automation.notify_access_request_response(999, approved=True) == 0


class TestAwareTimestamps:
    def test_aware_now_matches_naive_columns(self, db_session, owner):
        add_subscription(db_session, owner, renewal_date=NOW + timedelta(days=2))
        aware_now = NOW.replace(tzinfo=timezone.utc)

        assert NotificationAutomation(db_session).run_all_checks(aware_now)["expiring_subscriptions"] == 1

    def test_unexpected_error_does_not_stop_other_checks(self, db_session, owner):
        add_subscription(db_session, owner, last_password_change=NOW - timedelta(days=100))
        automation = NotificationAutomation(db_session)

        with patch.object(automation, "check_overdue_payments", side_effect=TypeError("bad timestamp")):
            results = automation.run_all_checks(NOW)

        assert results == {"expiring_subscriptions": 0, "overdue_payments": -1, "password_rotation": 1}
