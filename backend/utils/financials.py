"""Financial summaries: per-member cost, savings and expense aggregation."""

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

import models
from utils.splits import member_share, savings_for_share

DEFAULT_CATEGORY = "Other"


@dataclass
class MembershipCost:
    """One subscription the user belongs to, with the inputs needed to price their spot."""
    subscription_id: int
    name: str
    service_name: str
    total_price: int
    members: int
    position: int = 0
    role: Optional[str] = None


def join_position(db: Session, subscription_id: int, user_id: int) -> int:
    """0-based index of the user among the subscription's members in join order."""
    member_ids = [
        uid for (uid,) in db.query(models.SubscriptionMember.user_id).filter(
            models.SubscriptionMember.subscription_id == subscription_id
        ).order_by(models.SubscriptionMember.joined_at, models.SubscriptionMember.id).all()
    ]
    return member_ids.index(user_id) if user_id in member_ids else 0


def load_membership_costs(db: Session, user_id: int, active_only: bool = True) -> list[MembershipCost]:
    """Every subscription the user is a member of, ready for financial_overview."""
    query = db.query(models.SubscriptionMember, models.Subscription).join(
        models.Subscription, models.SubscriptionMember.subscription_id == models.Subscription.id
    ).filter(models.SubscriptionMember.user_id == user_id)
    if active_only:
        query = query.filter(models.Subscription.is_active == True)

    return [
        MembershipCost(
            subscription_id=subscription.id,
            name=subscription.name,
            service_name=subscription.service_name,
            total_price=subscription.total_price,
            members=subscription.current_members or 1,
            position=join_position(db, subscription.id, user_id),
            role=member.role,
        )
        for member, subscription in query.order_by(models.Subscription.name).all()
    ]


def financial_overview(memberships: Iterable[MembershipCost]) -> dict:
    """
    Price every membership and total the result.

    Returns a dict with total_paid, total_saved, savings_percentage,
    subscription_count and a per-subscription breakdown (all amounts in cents).
    """
    breakdown = []
    total_paid = 0
    total_saved = 0

    for m in memberships:
        share = member_share(m.total_price, m.members, m.position)
        savings = savings_for_share(m.total_price, share)
        total_paid += share
        total_saved += savings
        breakdown.append({
            "id": m.subscription_id,
            "name": m.name,
            "service_name": m.service_name,
            "full_price": m.total_price,
            "your_share": share,
            "savings": savings,
            "members": max(m.members, 1),
            "role": m.role,
        })

    potential_total = total_paid + total_saved
    savings_percentage = (total_saved / potential_total) * 100 if potential_total > 0 else 0.0

    return {
        "total_paid": total_paid,
        "total_saved": total_saved,
        "savings_percentage": savings_percentage,
        "subscription_count": len(breakdown),
        "breakdown": breakdown,
    }


def lifetime_totals(summaries) -> dict:
    """Sum total_paid and total_saved over FinancialSummary rows."""
    return {
        "total_paid": sum(s.total_paid or 0 for s in summaries),
        "total_saved": sum(s.total_saved or 0 for s in summaries),
    }


def summarize_expenses(expenses, subscription_names: dict[int, str]) -> dict:
    """Aggregate expenses by subscription and by category, preserving first-seen order."""
    total_amount = 0
    by_subscription: dict = {}
    by_category: dict = {}

    for expense in expenses:
        total_amount += expense.amount

        sub_id = expense.subscription_id
        if sub_id not in by_subscription:
            label = subscription_names.get(sub_id, "Unknown") if sub_id is not None else "No subscription"
            by_subscription[sub_id] = {"key": sub_id, "label": label, "total_amount": 0, "count": 0}
        by_subscription[sub_id]["total_amount"] += expense.amount
        by_subscription[sub_id]["count"] += 1

        category = expense.category or DEFAULT_CATEGORY
        if category not in by_category:
            by_category[category] = {"key": category, "label": category, "total_amount": 0, "count": 0}
        by_category[category]["total_amount"] += expense.amount
        by_category[category]["count"] += 1

    return {
        "total_amount": total_amount,
        "total_count": sum(b["count"] for b in by_category.values()),
        "by_subscription": list(by_subscription.values()),
        "by_category": list(by_category.values()),
    }


def summarize_payments(payments) -> dict:
    """Completed and pending totals over a list of payments."""
    return {
        "total_paid": sum(p.amount for p in payments if p.status == "completed"),
        "pending_amount": sum(p.amount for p in payments if p.status == "pending"),
        "total_payments": len(payments),
    }
