"""
services/settlement_service.py — Settlement recording and credit scoring.

Rules enforced here:
  SELF_SETTLEMENT (422)       the caller cannot pay themselves
  RECIPIENT_NOT_MEMBER (422)  the recipient must be a registered group member
  FORBIDDEN (403)             the caller must be a group member
  OVERPAYMENT (warning)       overpayment is recorded, with a warning

Only registered users take part in settlements. A pending member's balance
is settled after reconciliation turns it into a user.

Scoring:
  A settlement recorded as completed scores its debtor (the caller)
  immediately. A settlement recorded as pending ages until
  complete_settlement() is called; in between the delay scanner may
  penalise it. credit_score_processed is set once the completion event has
  been scored.

  days_delayed is taken from the request for manual settlements (default 0:
  manual settlements are on time). When the settlement names an expense it
  is derived from that expense's age instead.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from splitcredit.app.errors import AppError, ErrorCode, WarningCode
from splitcredit.app.models.expense import Expense
from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.models.settlement import Settlement, SettlementMethod, SettlementStatus
from splitcredit.app.services import balance_service, credit_score_service
from splitcredit.app.services.credit_score_service import ScoreResult


ZERO = Decimal("0.00")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_settlement_or_404(settlement_id: int, session: Session) -> Settlement:
    settlement = session.get(Settlement, settlement_id, with_for_update=True)
    if settlement is None:
        raise AppError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist.",
            404,
        )
    return settlement


def _get_linked_expense(
        expense_id: int,
        group_id: int,
        session: Session,
) -> Expense:
    """
    The expense a settlement names. Checked for every settlement, pending or
    not, so a stored expense_id always points into the same group.
    """
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
            field="expense_id",
        )
    if expense.group_id != group_id:
        raise AppError(
            ErrorCode.EXPENSE_NOT_IN_GROUP,
            f"Expense {expense_id} does not belong to group {group_id}.",
            422,
            field="expense_id",
        )
    return expense


def _max_settleable(
        group_id: int,
        debtor: ParticipantRef,
        creditor: ParticipantRef,
        session: Session,
) -> Decimal:
    """min(what the debtor owes, what the creditor is owed), never negative."""
    balances = balance_service.compute_balances(group_id, session)
    owes = max(ZERO, -balances.get(debtor, ZERO))
    owed = max(ZERO, balances.get(creditor, ZERO))
    return min(owes, owed)


# ── Public service functions ───────────────────────────────────────────────

def record_settlement(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        now: datetime | None = None,
) -> tuple[Settlement, ScoreResult | None, list[dict]]:
    """
    Records a payment from the caller to `to_user_id` and scores it.

    Args:
        group_id:  The group this settlement belongs to.
        caller_id: The authenticated debtor (from flask.g).
        data:      Validated dict from CreateSettlementSchema.
                   Keys: to_user_id, amount, and optionally days_delayed,
                   expense_id, status, method, note.

    expense_id is validated for every status. days_delayed comes from the
    expense's age when one is named, else from data (default 0), and is
    only used when the settlement is recorded as completed.

    Returns:
        (settlement, credit_result, warnings). credit_result is None for a
        settlement recorded as pending.
    """
    now = now or datetime.now(timezone.utc)

    balance_service.get_group_or_404(group_id, session)
    balance_service.require_member(group_id, caller_id, session)

    to_user_id: int = data["to_user_id"]
    amount: Decimal = data["amount"]

    # The caller comes from the auth context, so this cannot live in the schema.
    if caller_id == to_user_id:
        raise AppError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            422,
            field="to_user_id",
        )

    if to_user_id not in balance_service.get_member_ids(group_id, session):
        raise AppError(
            ErrorCode.RECIPIENT_NOT_MEMBER,
            f"User {to_user_id} is not a member of group {group_id}.",
            422,
            field="to_user_id",
        )

    expense_id: int | None = data.get("expense_id")
    expense = None
    if expense_id is not None:
        expense = _get_linked_expense(expense_id, group_id, session)

    debtor = ParticipantRef.user(caller_id)
    creditor = ParticipantRef.user(to_user_id)

    warnings: list[dict] = []
    max_amount = _max_settleable(group_id, debtor, creditor, session)
    if amount > max_amount:
        warnings.append({
            "code": WarningCode.OVERPAYMENT,
            "message": (
                f"Settlement of {amount} exceeds the due balance of {max_amount} "
                f"from user {caller_id} to user {to_user_id}. "
                f"Recording anyway — pre-payment is valid."
            ),
        })

    status: SettlementStatus = data.get("status", SettlementStatus.COMPLETED)
    settlement = Settlement(
        group_id=group_id,
        from_participant=debtor,
        to_participant=creditor,
        amount=amount,
        expense_id=expense_id,
        method=data.get("method", SettlementMethod.CASH),
        note=(data.get("note") or "").strip(),
        status=status,
        completed_at=now if status is SettlementStatus.COMPLETED else None,
    )
    session.add(settlement)
    session.flush()

    credit_result = None
    if status is SettlementStatus.COMPLETED:
        # A pending settlement is scored on completion, from its own age.
        if expense is not None:
            days_delayed = credit_score_service.days_between(expense.created_at, now)
        else:
            days_delayed = data.get("days_delayed", 0)
        credit_result = credit_score_service.score_settlement(
            caller_id, days_delayed, settlement.id, session,
        )
        settlement.credit_score_processed = True
        session.flush()

    return settlement, credit_result, warnings


def complete_settlement(
        settlement_id: int,
        caller_id: int,
        session: Session,
        now: datetime | None = None,
) -> tuple[Settlement, ScoreResult]:
    """
    Marks a pending settlement completed and scores its debtor.

    Either party may confirm. days_delayed is the settlement's age, so a
    payment confirmed 10 days after it was logged scores delayed_gt7. If the
    scanner already charged that tier, the event is a duplicate.

    Raises:
        AppError(SETTLEMENT_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)                     caller is neither party
        AppError(SETTLEMENT_ALREADY_COMPLETED, 422)
    """
    now = now or datetime.now(timezone.utc)
    settlement = _get_settlement_or_404(settlement_id, session)

    parties = {settlement.from_participant, settlement.to_participant}
    if ParticipantRef.user(caller_id) not in parties:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a party to settlement {settlement_id}.",
            403,
        )

    if settlement.is_completed:
        raise AppError(
            ErrorCode.SETTLEMENT_ALREADY_COMPLETED,
            f"Settlement {settlement_id} is already completed.",
            422,
        )

    settlement.status = SettlementStatus.COMPLETED
    settlement.completed_at = now
    session.flush()

    days_delayed = credit_score_service.days_between(settlement.created_at, now)
    credit_result = credit_score_service.score_settlement(
        settlement.from_participant_id, days_delayed, settlement.id, session,
    )
    settlement.credit_score_processed = True
    session.flush()

    return settlement, credit_result


def list_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
) -> list[Settlement]:
    """
    Returns all settlements for a group, newest first.

    FORBIDDEN (403) unless the caller is a group member.
    """
    balance_service.get_group_or_404(group_id, session)
    balance_service.require_member(group_id, caller_id, session)

    stmt = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    return list(session.execute(stmt).scalars().all())

