"""
services/activity_service.py — Group activity feed.

Activity writes are NON-BLOCKING. Routes call the log_* helpers only after
the primary operation has committed; each helper commits its own row, and a
database failure is rolled back, logged at WARNING, and swallowed. The
caller's response never depends on the feed.

This does not apply to CreditHistory: the credit audit row is written in
the same transaction as the score change (credit_score_service.py).
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from splitcredit.app.models.activity import Activity, ActivityAction
from splitcredit.app.models.expense import Expense
from splitcredit.app.models.settlement import Settlement
from splitcredit.app.services import balance_service


logger = logging.getLogger(__name__)


def log_activity(
        session: Session,
        group_id: int,
        user_id: int,
        action: ActivityAction,
        description: str,
        target_type: str | None = None,
        target_id: int | None = None,
        details: dict | None = None,
) -> Activity | None:
    """Writes and commits one activity row. Returns None if the write failed."""
    try:
        activity = Activity(
            group_id=group_id,
            user_id=user_id,
            action=action,
            description=description[:500],
            target_type=target_type,
            target_id=target_id,
            details=details or {},
        )
        session.add(activity)
        session.commit()
        return activity
    except SQLAlchemyError as error:
        session.rollback()
        logger.warning(
            "Activity log write failed (non-blocking): group=%s action=%s: %s",
            group_id,
            action.value,
            error,
        )
        return None


def log_expense_added(session: Session, user_id: int, expense: Expense) -> Activity | None:
    return log_activity(
        session,
        group_id=expense.group_id,
        user_id=user_id,
        action=ActivityAction.EXPENSE_ADDED,
        description=f'Added "{expense.title}" ({expense.amount})',
        target_type="expense",
        target_id=expense.id,
        details={
            "amount": str(expense.amount),
            "category": expense.category.value,
            "split_mode": expense.split_mode.value,
        },
    )


def log_expense_deleted(session: Session, user_id: int, deleted: dict) -> Activity | None:
    """`deleted` is the summary returned by expense_service.delete_expense()."""
    return log_activity(
        session,
        group_id=deleted["group_id"],
        user_id=user_id,
        action=ActivityAction.EXPENSE_DELETED,
        description=f'Deleted "{deleted["title"]}" ({deleted["amount"]})',
        target_type="expense",
        target_id=deleted["id"],
        details={"amount": str(deleted["amount"])},
    )


def log_settlement(session: Session, user_id: int, settlement: Settlement) -> Activity | None:
    """settlement_confirmed for a completed settlement, settlement_initiated otherwise."""
    action = (
        ActivityAction.SETTLEMENT_CONFIRMED
        if settlement.is_completed
        else ActivityAction.SETTLEMENT_INITIATED
    )
    verb = "Settled" if settlement.is_completed else "Started settling"
    return log_activity(
        session,
        group_id=settlement.group_id,
        user_id=user_id,
        action=action,
        description=f"{verb} {settlement.amount} with user {settlement.to_participant_id}",
        target_type="settlement",
        target_id=settlement.id,
        details={
            "amount": str(settlement.amount),
            "method": settlement.method.value,
            "to_user_id": settlement.to_participant_id,
        },
    )


def log_member_joined(session: Session, user_id: int, group_ids: list[int]) -> None:
    """One member_joined row per group a reconciled user was moved into."""
    for group_id in group_ids:
        log_activity(
            session,
            group_id=group_id,
            user_id=user_id,
            action=ActivityAction.MEMBER_JOINED,
            description="Joined the group after registering",
            target_type="user",
            target_id=user_id,
        )


def list_group_activity(
        group_id: int,
        caller_id: int,
        session: Session,
        limit: int = 20,
        skip: int = 0,
) -> dict:
    """Newest-first page of a group's activity. Caller must be a member."""
    balance_service.get_group_or_404(group_id, session)
    balance_service.require_member(group_id, caller_id, session)

    rows = session.execute(
        select(Activity)
        .where(Activity.group_id == group_id)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .offset(skip)
        .limit(limit)
    ).scalars().all()

    total = session.execute(
        select(func.count()).select_from(Activity).where(Activity.group_id == group_id)
    ).scalar_one()

    return {
        "activities": [
            {
                "id": a.id,
                "user_id": a.user_id,
                "action": a.action.value,
                "description": a.description,
                "target_type": a.target_type,
                "target_id": a.target_id,
                "details": a.details,
                "created_at": a.created_at.isoformat(),
            }
            for a in rows
        ],
        "total": total,
        "has_more": skip + len(rows) < total,
    }
