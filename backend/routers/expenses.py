"""Expenses router: record, list, summarize and delete subscription expenses."""

from datetime import datetime
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user
from utils.financials import summarize_expenses
from utils.validation import verify_group_membership, verify_subscription_access


router = APIRouter(tags=["expenses"])


def with_participants(db: Session, expenses: list[models.Expense]) -> list[schemas.ExpenseWithParticipants]:
    """Attach payer name, subscription name and participants to each expense."""
    if not expenses:
        return []

    expense_ids = [e.id for e in expenses]
    user_ids = {e.user_id for e in expenses}
    subscription_ids = {e.subscription_id for e in expenses if e.subscription_id is not None}

    participant_rows = db.query(models.ExpenseParticipant, models.User).join(
        models.User, models.ExpenseParticipant.user_id == models.User.id
    ).filter(models.ExpenseParticipant.expense_id.in_(expense_ids)).all()

    participants: dict[int, list[schemas.ExpenseParticipant]] = {}
    for participant, user in participant_rows:
        participants.setdefault(participant.expense_id, []).append(
            schemas.ExpenseParticipant(id=user.id, full_name=user.full_name or user.email)
        )

    users = {u.id: u for u in db.query(models.User).filter(models.User.id.in_(user_ids)).all()}
    subscription_names = dict(
        db.query(models.Subscription.id, models.Subscription.name).filter(
            models.Subscription.id.in_(subscription_ids)
        ).all()
    ) if subscription_ids else {}

    result = []
    for expense in expenses:
        payer = users.get(expense.user_id)
        result.append(schemas.ExpenseWithParticipants(
            **schemas.Expense.model_validate(expense).model_dump(),
            user_name=(payer.full_name or payer.email) if payer else "Unknown",
            subscription_name=subscription_names.get(expense.subscription_id),
            participants=participants.get(expense.id, [])
        ))
    return result


def newest_first(query):
    return query.order_by(models.Expense.date.desc(), models.Expense.id.desc())


@router.post("/expenses", response_model=schemas.ExpenseWithParticipants, status_code=201)
def create_expense(
    expense: schemas.ExpenseCreate,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    if expense.subscription_id is not None:
        verify_subscription_access(db, expense.subscription_id, current_user.id)

    participant_ids = list(dict.fromkeys(expense.participants))
    if participant_ids:
        found = db.query(models.User.id).filter(models.User.id.in_(participant_ids)).count()
        if found != len(participant_ids):
            raise HTTPException(status_code=400, detail="One or more participants do not exist")

    db_expense = models.Expense(
        user_id=current_user.id,
        subscription_id=expense.subscription_id,
        description=expense.description,
        amount=expense.amount,
        category=expense.category,
        date=expense.date or datetime.utcnow()
    )
    db.add(db_expense)
    db.flush()

    for user_id in participant_ids:
        db.add(models.ExpenseParticipant(expense_id=db_expense.id, user_id=user_id))

    db.commit()
    db.refresh(db_expense)
    return with_participants(db, [db_expense])[0]


@router.get("/expenses", response_model=list[schemas.ExpenseWithParticipants])
def read_expenses(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expenses = newest_first(
        db.query(models.Expense).filter(models.Expense.user_id == current_user.id)
    ).all()
    return with_participants(db, expenses)


@router.get("/expenses/summary", response_model=schemas.ExpenseSummary)
def read_expense_summary(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expenses = newest_first(
        db.query(models.Expense).filter(models.Expense.user_id == current_user.id)
    ).all()

    subscription_ids = {e.subscription_id for e in expenses if e.subscription_id is not None}
    subscription_names = dict(
        db.query(models.Subscription.id, models.Subscription.name).filter(
            models.Subscription.id.in_(subscription_ids)
        ).all()
    ) if subscription_ids else {}

    return summarize_expenses(expenses, subscription_names)


@router.delete("/expenses/{expense_id}", response_model=schemas.Message)
def delete_expense(
    expense_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    expense = db.query(models.Expense).filter(
        models.Expense.id == expense_id,
        models.Expense.user_id == current_user.id
    ).first()
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    db.query(models.ExpenseParticipant).filter(models.ExpenseParticipant.expense_id == expense_id).delete()
    db.delete(expense)
    db.commit()
    return {"message": "Expense deleted successfully"}


@router.get("/subscriptions/{subscription_id}/expenses", response_model=list[schemas.ExpenseWithParticipants])
def read_subscription_expenses(
    subscription_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    verify_subscription_access(db, subscription_id, current_user.id)
    expenses = newest_first(
        db.query(models.Expense).filter(models.Expense.subscription_id == subscription_id)
    ).all()
    return with_participants(db, expenses)


@router.get("/groups/{group_id}/expenses", response_model=list[schemas.ExpenseWithParticipants])
def read_group_expenses(
    group_id: int,
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    verify_group_membership(db, group_id, current_user.id)

    subscription_ids = [
        sid for (sid,) in db.query(models.Subscription.id).filter(models.Subscription.group_id == group_id).all()
    ]
    if not subscription_ids:
        return []

    expenses = newest_first(
        db.query(models.Expense).filter(models.Expense.subscription_id.in_(subscription_ids))
    ).all()
    return with_participants(db, expenses)
