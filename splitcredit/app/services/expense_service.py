"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  SPLIT_SUM_MISMATCH (422)        sum(splits.amount) == expense.amount exactly
  PARTICIPANT_NOT_IN_GROUP (422)  payer and every split participant must be a
                                  current participant (member or pending)
  FORBIDDEN (403)                 caller must be a group member; delete is
                                  limited to the payer or the group owner

Expenses are immutable. There is no edit; a wrong expense is deleted and
re-entered. Deletion is a hard delete: the splits go with it and any
settlement that named the expense keeps its row with expense_id cleared.

Equal split computation:
  - Divides amount among ALL current participants (members and pending)
    using ROUND_DOWN.
  - The remainder (at most n-1 cents) is added to the payer's split.
  - This guarantees sum(splits) == amount.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_DOWN, Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from splitcredit.app.errors import AppError, ErrorCode
from splitcredit.app.models.expense import Category, Expense, SplitMode
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef
from splitcredit.app.models.settlement import Settlement
from splitcredit.app.models.split import Split
from splitcredit.app.services import balance_service


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _validate_in_group(
        ref: ParticipantRef,
        group_id: int,
        directory: set[ParticipantRef],
        field: str,
) -> None:
    if ref not in directory:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_IN_GROUP,
            f"Participant {ref} is not in group {group_id}.",
            422,
            field=field,
        )


def _validate_split_sum(splits: list[dict], expected_amount: Decimal) -> None:
    """
    Raises SPLIT_SUM_MISMATCH (422) if sum(splits.amount) != expected_amount.
    Exact Decimal comparison, no tolerance.
    """
    total = sum((s["amount"] for s in splits), Decimal("0.00"))
    if total != expected_amount:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({total}) do not equal expense amount ({expected_amount}).",
            422,
            field="splits",
        )


def compute_equal_splits(
        amount: Decimal,
        participants: list[ParticipantRef],
        payer: ParticipantRef,
) -> list[dict]:
    """
    Divides amount evenly among participants using ROUND_DOWN.
    The remainder goes to the payer's split (or the first participant if the
    payer is not among them).

    Returns:
        List of {"participant": ParticipantRef, "amount": Decimal} dicts.
    """
    n = len(participants)
    base = (amount / Decimal(n)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    remainder = amount - (base * n)

    splits = [{"participant": ref, "amount": base} for ref in participants]

    if remainder > Decimal("0"):
        payer_split = next(
            (s for s in splits if s["participant"] == payer),
            splits[0],
        )
        payer_split["amount"] += remainder

    # Sanity check — a failure here is a programming error.
    computed_sum = sum(s["amount"] for s in splits)
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}. "
            f"This is a bug — please report it.",
            500,
        )

    return splits


def _participant_names(expenses: list[Expense], session: Session) -> dict[ParticipantRef, str]:
    refs = {e.payer for e in expenses}
    refs.update(s.participant for e in expenses for s in e.splits)
    return balance_service.get_participant_names(refs, session)


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense for a group.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema. `payer` and each
                   split's `participant` are ParticipantRefs.

    Equal split mode:
      Server computes splits across ALL current participants of the group.
      Client must NOT send a splits array — the schema enforces this.
    """
    balance_service.get_group_or_404(group_id, session)
    balance_service.require_member(group_id, caller_id, session)

    payer: ParticipantRef = data["payer"]
    amount: Decimal = data["amount"]
    split_mode: SplitMode = data.get("split_mode", SplitMode.CUSTOM)
    category: Category = data.get("category", Category.OTHER)

    ordered = balance_service.get_directory(group_id, session)
    directory = set(ordered)

    _validate_in_group(payer, group_id, directory, field="payer_id")

    if split_mode == SplitMode.EQUAL:
        splits_data = compute_equal_splits(amount, ordered, payer)
    else:
        splits_data = data.get("splits") or []
        for s in splits_data:
            _validate_in_group(s["participant"], group_id, directory, field="splits")
        _validate_split_sum(splits_data, amount)

    has_pending = payer.is_pending or any(s["participant"].is_pending for s in splits_data)

    expense = Expense(
        group_id=group_id,
        title=data["title"].strip(),
        amount=amount,
        payer=payer,
        split_mode=split_mode,
        category=category,
        has_pending_participants=has_pending,
        created_by_user_id=caller_id,
    )
    expense.splits = [
        Split(participant=s["participant"], amount=s["amount"])
        for s in splits_data
    ]
    session.add(expense)
    session.flush()

    # Load server defaults (created_at) for serialisation.
    session.refresh(expense)
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Hard-deletes an expense and its splits.

    Authorization: only the payer (when a registered user) or the group
    owner may delete. FORBIDDEN (403) otherwise, and for non-members.

    Returns:
        {"id", "group_id", "title", "amount"} of the deleted expense, for
        the activity feed.
    """
    expense = _get_expense_or_404(expense_id, session)
    balance_service.require_member(expense.group_id, caller_id, session)

    group = balance_service.get_group_or_404(expense.group_id, session)
    is_payer = expense.payer == ParticipantRef(ParticipantKind.USER, caller_id)
    is_owner = caller_id == group.owner_user_id

    if not (is_payer or is_owner):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the payer or the group owner may delete this expense.",
            403,
        )

    deleted = {
        "id": expense.id,
        "group_id": expense.group_id,
        "title": expense.title,
        "amount": expense.amount,
    }

    session.execute(
        update(Settlement)
        .where(Settlement.expense_id == expense.id)
        .values(expense_id=None)
    )
    session.delete(expense)
    session.flush()
    return deleted


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
        category: Category | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 50,
) -> tuple[list[Expense], dict[ParticipantRef, str]]:
    """
    Expense history for a group, newest first.

    start_date and end_date are inclusive UTC calendar days. Returns the
    expenses with their splits loaded, and display names for every payer
    and split participant (User.name or the pending member's display_name).

    Caller must be a group member (FORBIDDEN, 403).
    """
    balance_service.get_group_or_404(group_id, session)
    balance_service.require_member(group_id, caller_id, session)

    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(Expense.group_id == group_id)
    )
    if category is not None:
        stmt = stmt.where(Expense.category == category)
    if start_date is not None:
        stmt = stmt.where(
            Expense.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        )
    if end_date is not None:
        stmt = stmt.where(
            Expense.created_at < datetime.combine(
                end_date + timedelta(days=1), time.min, tzinfo=timezone.utc,
            )
        )
    stmt = stmt.order_by(Expense.created_at.desc(), Expense.id.desc()).limit(limit)

    expenses = list(session.execute(stmt).scalars().all())
    return expenses, _participant_names(expenses, session)


def get_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> tuple[Expense, dict[ParticipantRef, str]]:
    """A single expense with its splits. Caller must be a member of its group."""
    expense = _get_expense_or_404(expense_id, session)
    balance_service.require_member(expense.group_id, caller_id, session)
    return expense, _participant_names([expense], session)
