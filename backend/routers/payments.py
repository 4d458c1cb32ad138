"""Payments router: record member payments and settle them into monthly summaries."""

from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, Severity
from utils.financials import summarize_payments
from utils.validation import get_subscription_member, verify_subscription_access


router = APIRouter(prefix="/payments", tags=["payments"])


def payment_details(rows) -> list[schemas.PaymentDetail]:
    return [
        schemas.PaymentDetail(
            **schemas.Payment.model_validate(payment).model_dump(),
            subscription_name=subscription.name,
            service_name=subscription.service_name
        )
        for payment, subscription in rows
    ]


def recent_payments(db: Session, user_id: int, limit: int = 20) -> list[schemas.PaymentDetail]:
    rows = db.query(models.Payment, models.Subscription).join(
        models.Subscription, models.Payment.subscription_id == models.Subscription.id
    ).filter(
        models.Payment.user_id == user_id
    ).order_by(models.Payment.created_at.desc(), models.Payment.id.desc()).limit(limit).all()
    return payment_details(rows)


def add_to_financial_summary(db: Session, user_id: int, paid_at: datetime, amount: int, saved: int):
    """Fold a payment into the user's FinancialSummary row for that month. Negative amounts take it back out."""
    summary = db.query(models.FinancialSummary).filter(
        models.FinancialSummary.user_id == user_id,
        models.FinancialSummary.year == paid_at.year,
        models.FinancialSummary.month == paid_at.month
    ).first()

    if not summary:
        summary = models.FinancialSummary(
            user_id=user_id,
            year=paid_at.year,
            month=paid_at.month,
            total_paid=0,
            total_saved=0
        )
        db.add(summary)

    summary.total_paid = max((summary.total_paid or 0) + amount, 0)
    summary.total_saved = max((summary.total_saved or 0) + saved, 0)
    return summary


def settle_payment(db: Session, payment: models.Payment, sign: int):
    """Add (sign=1) or remove (sign=-1) a payment from the summary of the month it was paid in."""
    subscription = db.query(models.Subscription).filter(
        models.Subscription.id == payment.subscription_id
    ).first()
    saved = max(subscription.total_price - payment.amount, 0) if subscription else 0
    add_to_financial_summary(db, payment.user_id, payment.paid_at, sign * payment.amount, sign * saved)


@router.get("", response_model=schemas.PaymentList)
def read_payments(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    subscription_id: Optional[int] = None,
    status: Optional[schemas.PaymentStatus] = None,
    limit: int = Query(default=50, ge=1, le=100)
):
    query = db.query(models.Payment, models.Subscription).join(
        models.Subscription, models.Payment.subscription_id == models.Subscription.id
    ).filter(models.Payment.user_id == current_user.id)

    if subscription_id is not None:
        query = query.filter(models.Payment.subscription_id == subscription_id)
    if status:
        query = query.filter(models.Payment.status == status)

    rows = query.order_by(models.Payment.created_at.desc(), models.Payment.id.desc()).limit(limit).all()
    payments = [payment for payment, _ in rows]

    return schemas.PaymentList(
        payments=payment_details(rows),
        summary=schemas.PaymentSummary(**summarize_payments(payments))
    )


@router.post("", response_model=schemas.Payment, status_code=201)
def create_payment(
    payment: schemas.PaymentCreate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    subscription = verify_subscription_access(db, payment.subscription_id, current_user.id)

    if payment.billing_period_end < payment.billing_period_start:
        raise HTTPException(status_code=400, detail="Billing period end must not precede its start")

    db_payment = models.Payment(
        **payment.model_dump(),
        user_id=current_user.id,
        currency=subscription.currency,
        status="pending"
    )
    db.add(db_payment)
    db.commit()
    db.refresh(db_payment)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.PAYMENT_CREATED,
        entity_type=EntityTypes.PAYMENT,
        entity_id=db_payment.id,
        details={"subscription_id": subscription.id, "amount": db_payment.amount},
    )
    db.refresh(db_payment)
    return db_payment


@router.put("/{payment_id}/status", response_model=schemas.Payment)
def update_payment_status(
    payment_id: int,
    status_update: schemas.PaymentStatusUpdate,
    request: Request,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    payment = db.query(models.Payment).filter(
        models.Payment.id == payment_id,
        models.Payment.user_id == current_user.id
    ).first()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    previous_status = payment.status
    payment.status = status_update.status

    # Only completed payments count towards the monthly summary
    if previous_status == "completed" and status_update.status != "completed":
        settle_payment(db, payment, -1)
    elif status_update.status == "completed" and previous_status != "completed":
        if payment.paid_at is None:
            now = datetime.utcnow()
            payment.paid_at = now

            membership = get_subscription_member(db, payment.subscription_id, current_user.id)
            if membership:
                membership.last_payment = now
                membership.next_payment_due = payment.billing_period_end

        settle_payment(db, payment, 1)

    db.commit()
    db.refresh(payment)

    AuditLogger.log_with_request(
        db, request,
        user_id=current_user.id,
        action=Actions.PAYMENT_UPDATED,
        entity_type=EntityTypes.PAYMENT,
        entity_id=payment.id,
        severity=Severity.MEDIUM,
        details={"from": previous_status, "to": payment.status},
    )
    db.refresh(payment)
    return payment
