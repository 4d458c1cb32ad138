"""Dashboard router: financial overview and alerts for the current user."""

from datetime import datetime, timedelta
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.financials import financial_overview, lifetime_totals, load_membership_costs
from utils.notifications import EXPIRY_WINDOW_DAYS, PASSWORD_ROTATION_MONTHS, days_until, months_ago
from routers.payments import recent_payments


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def expiry_severity(days: int) -> str:
    if days <= 1:
        return "critical"
    if days <= 3:
        return "warning"
    return "info"


@router.get("/financial", response_model=schemas.FinancialDashboard)
def get_financial_dashboard(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    overview = financial_overview(load_membership_costs(db, current_user.id))

    monthly_summaries = db.query(models.FinancialSummary).filter(
        models.FinancialSummary.user_id == current_user.id
    ).order_by(
        models.FinancialSummary.year.desc(), models.FinancialSummary.month.desc()
    ).limit(12).all()

    return schemas.FinancialDashboard(
        current_month=schemas.CurrentMonth(
            total_paid=overview["total_paid"],
            total_saved=overview["total_saved"],
            savings_percentage=overview["savings_percentage"],
            subscription_count=overview["subscription_count"]
        ),
        lifetime=schemas.LifetimeTotals(**lifetime_totals(monthly_summaries)),
        subscription_breakdown=[schemas.SubscriptionBreakdown(**row) for row in overview["breakdown"]],
        recent_payments=recent_payments(db, current_user.id),
        monthly_summaries=[schemas.MonthlySummary.model_validate(s) for s in monthly_summaries]
    )


@router.get("/alerts", response_model=schemas.DashboardAlerts)
def get_dashboard_alerts(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    now = datetime.utcnow()
    alerts = {"critical": [], "warning": [], "info": []}

    expiring = db.query(models.Subscription).join(
        models.SubscriptionMember, models.SubscriptionMember.subscription_id == models.Subscription.id
    ).filter(
        models.SubscriptionMember.user_id == current_user.id,
        models.Subscription.is_active == True,
        models.Subscription.renewal_date >= now,
        models.Subscription.renewal_date < now + timedelta(days=EXPIRY_WINDOW_DAYS)
    ).all()

    for subscription in expiring:
        days = days_until(subscription.renewal_date, now)
        severity = expiry_severity(days)
        alerts[severity].append(schemas.Alert(
            type="subscription_expiring",
            severity=severity,
            title=f"{subscription.name} expires in {days} day(s)",
            description=f"The {subscription.service_name} subscription needs to be renewed.",
            action_url=f"/subscriptions/{subscription.id}",
            action_text="Renew" if subscription.owner_id == current_user.id else "View Details",
            data={
                "subscription_id": subscription.id,
                "renewal_date": subscription.renewal_date.isoformat(),
                "days_until_expiry": days
            }
        ))

    overdue = db.query(models.SubscriptionMember, models.Subscription).join(
        models.Subscription, models.SubscriptionMember.subscription_id == models.Subscription.id
    ).filter(
        models.SubscriptionMember.user_id == current_user.id,
        models.SubscriptionMember.next_payment_due < now,
        models.Subscription.is_active == True
    ).all()

    for member, subscription in overdue:
        days_overdue = days_until(now, member.next_payment_due)
        alerts["critical"].append(schemas.Alert(
            type="payment_overdue",
            severity="critical",
            title=f"Payment overdue - {subscription.name}",
            description=f"Payment is {days_overdue} day(s) overdue.",
            action_url=f"/subscriptions/{subscription.id}/payment",
            action_text="Pay Now",
            data={
                "subscription_id": subscription.id,
                "next_payment_due": member.next_payment_due.isoformat(),
                "days_overdue": days_overdue
            }
        ))

    pending_requests = db.query(models.AccessRequest).join(
        models.Subscription, models.AccessRequest.subscription_id == models.Subscription.id
    ).filter(
        models.Subscription.owner_id == current_user.id,
        models.AccessRequest.status == "pending"
    ).count()

    if pending_requests:
        alerts["info"].append(schemas.Alert(
            type="pending_requests",
            severity="info",
            title=f"{pending_requests} pending request(s)",
            description="You have access requests waiting for approval.",
            action_url="/dashboard/requests",
            action_text="Review",
            data={"count": pending_requests}
        ))

    stale_passwords = db.query(models.Subscription).filter(
        models.Subscription.owner_id == current_user.id,
        models.Subscription.is_active == True,
        models.Subscription.last_password_change != None,
        models.Subscription.last_password_change < months_ago(now, PASSWORD_ROTATION_MONTHS)
    ).all()

    for subscription in stale_passwords:
        months_since = (now - subscription.last_password_change).days // 30
        alerts["warning"].append(schemas.Alert(
            type="password_rotation",
            severity="warning",
            title=f"Old password - {subscription.name}",
            description=f"The password has not been changed in {months_since} months.",
            action_url=f"/subscriptions/{subscription.id}/credentials",
            action_text="Update Password",
            data={
                "subscription_id": subscription.id,
                "last_password_change": subscription.last_password_change.isoformat(),
                "months_since_change": months_since
            }
        ))

    unread_notifications = db.query(models.Notification).filter(
        models.Notification.user_id == current_user.id,
        models.Notification.is_read == False
    ).count()

    return schemas.DashboardAlerts(
        summary=schemas.AlertSummary(
            critical=len(alerts["critical"]),
            warning=len(alerts["warning"]),
            info=len(alerts["info"]),
            unread_notifications=unread_notifications
        ),
        alerts=schemas.AlertGroups(**alerts),
        last_updated=now
    )
