"""
services/reconciliation_service.py — Pending member → registered user migration.

Invoked once a phone number completes registration. Moves everything the
pending member took part in onto the new user:

  1. group pending-list entries → active memberships
  2. expense payer and split references → the user (has_pending_participants
     recomputed per expense). Where the user already holds a split on the
     same expense, the pending share is added to it and the pending split
     is removed, since a participant appears once per expense.
  3. the pending record → resolved (resolved_to_user_id, resolved_at)

All of it happens in ONE transaction. A failure at any step rolls the whole
session back and raises ReconciliationFailure: a half-moved member would
orphan balance history (memberships moved but expenses still pointing at
the pending id, or the reverse). The failure is logged at ERROR with the
phone number and user id for manual follow-up.

Unlike the other services this one commits, because the rollback is part of
its contract.

net_balance is computed over the rewritten expenses only, with the same
payer-credit / split-debit rule as balance_service.aggregate_balances().
It is a summary for the welcome screen, not a group balance.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from splitcredit.app.errors import AppError, ErrorCode, ReconciliationFailure
from splitcredit.app.models.expense import Expense
from splitcredit.app.models.membership import Membership
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef
from splitcredit.app.models.pending_member import (
    PendingMember,
    PendingMembership,
    PendingMemberStatus,
)
from splitcredit.app.models.split import Split
from splitcredit.app.models.user import User
from splitcredit.app.services.balance_service import aggregate_balances


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )
    return user


def _find_invited(phone_number: str, session: Session) -> PendingMember | None:
    return session.execute(
        select(PendingMember)
        .where(
            PendingMember.phone_number == phone_number,
            PendingMember.status == PendingMemberStatus.INVITED,
        )
        .with_for_update()
    ).scalar_one_or_none()


def _expenses_referencing(
        pending_ref: ParticipantRef,
        session: Session,
        lock: bool = False,
) -> list[Expense]:
    """Expenses where the pending member is the payer or holds a split."""
    split_expense_ids = (
        select(Split.expense_id)
        .where(
            Split.participant_kind == pending_ref.kind,
            Split.participant_id == pending_ref.id,
        )
    )
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(
            or_(
                Expense.id.in_(split_expense_ids),
                (Expense.payer_kind == pending_ref.kind) & (Expense.payer_id == pending_ref.id),
            )
        )
        .order_by(Expense.id)
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(session.execute(stmt).scalars().all())


def _move_group_memberships(
        pending: PendingMember,
        user_id: int,
        session: Session,
) -> list[int]:
    """
    Replaces each pending-list entry with an active membership.
    A group the user already belongs to keeps its existing membership.
    Returns the affected group ids.
    """
    existing = set(session.execute(
        select(Membership.group_id).where(Membership.user_id == user_id)
    ).scalars().all())

    group_ids: list[int] = []
    for entry in list(pending.group_memberships):
        if entry.group_id not in existing:
            session.add(Membership(user_id=user_id, group_id=entry.group_id))
            existing.add(entry.group_id)
        group_ids.append(entry.group_id)
        session.delete(entry)

    session.flush()
    return group_ids


def _rewrite_expense_references(
        pending_ref: ParticipantRef,
        user_ref: ParticipantRef,
        session: Session,
) -> tuple[int, Decimal]:
    """
    Points every payer/split reference at the user.
    Returns (expenses_updated, net_balance over those expenses).
    """
    expenses = _expenses_referencing(pending_ref, session, lock=True)

    # Balance as the ledger would compute it, before the rewrite.
    net_balance = aggregate_balances([pending_ref], expenses, [])[pending_ref]

    for expense in expenses:
        if expense.payer == pending_ref:
            expense.payer = user_ref

        by_participant = {s.participant: s for s in expense.splits}
        pending_split = by_participant.get(pending_ref)
        if pending_split is not None:
            user_split = by_participant.get(user_ref)
            if user_split is None:
                pending_split.participant = user_ref
            else:
                user_split.amount += pending_split.amount
                expense.splits.remove(pending_split)

        expense.has_pending_participants = (
            expense.payer_kind is ParticipantKind.PENDING
            or any(s.participant_kind is ParticipantKind.PENDING for s in expense.splits)
        )

    session.flush()
    return len(expenses), net_balance


# ── Public service functions ───────────────────────────────────────────────

def reconcile_pending_participant(
        phone_number: str,
        new_user_id: int,
        session: Session,
        now: datetime | None = None,
) -> dict:
    """
    Atomically merges the invited pending member with this phone number
    into user `new_user_id`, then commits.

    Returns:
        {reconciled, groups_joined, expenses_updated, net_balance, group_ids}
        reconciled is False (and every count zero) when no invited record
        exists for the number.

    Raises:
        AppError(USER_NOT_FOUND, 404)  before anything is written.
        ReconciliationFailure (500)    after a full rollback.
    """
    now = now or datetime.now(timezone.utc)

    _get_user_or_404(new_user_id, session)

    try:
        pending = _find_invited(phone_number, session)
        if pending is None:
            session.commit()
            return {
                "reconciled": False,
                "groups_joined": 0,
                "expenses_updated": 0,
                "net_balance": ZERO,
                "group_ids": [],
            }

        pending_ref = pending.ref
        user_ref = ParticipantRef.user(new_user_id)

        group_ids = _move_group_memberships(pending, new_user_id, session)
        expenses_updated, net_balance = _rewrite_expense_references(
            pending_ref, user_ref, session,
        )

        pending.status = PendingMemberStatus.RESOLVED
        pending.resolved_to_user_id = new_user_id
        pending.resolved_at = now
        session.commit()

    except Exception as error:
        session.rollback()
        logger.error(
            "Reconciliation failed for phone=%s user_id=%s; rolled back: %s",
            phone_number,
            new_user_id,
            error,
            exc_info=True,
        )
        raise ReconciliationFailure(phone_number, new_user_id) from error

    logger.info(
        "Reconciled pending member %s into user %s: %d groups, %d expenses",
        pending_ref.id, new_user_id, len(group_ids), expenses_updated,
    )
    return {
        "reconciled": True,
        "groups_joined": len(group_ids),
        "expenses_updated": expenses_updated,
        "net_balance": net_balance.quantize(Decimal("0.01")),
        "group_ids": group_ids,
    }


def get_pending_member_data(phone_number: str, session: Session) -> dict | None:
    """
    Preview shown before registration completes: the invited member's
    display name, groups, and balance across all their expenses.
    Returns None when no invited record exists.
    """
    pending = session.execute(
        select(PendingMember)
        .options(selectinload(PendingMember.group_memberships).selectinload(PendingMembership.group))
        .where(
            PendingMember.phone_number == phone_number,
            PendingMember.status == PendingMemberStatus.INVITED,
        )
    ).scalar_one_or_none()

    if pending is None:
        return None

    pending_ref = pending.ref
    expenses = _expenses_referencing(pending_ref, session)
    balance = aggregate_balances([pending_ref], expenses, [])[pending_ref]

    return {
        "display_name": pending.display_name,
        "group_count": len(pending.group_memberships),
        "groups": [
            {"id": entry.group_id, "name": entry.group.name}
            for entry in pending.group_memberships
        ],
        "pending_balance": balance.quantize(Decimal("0.01")),
    }


def claim_pending_history(user_id: int, session: Session) -> dict:
    """Reconciles whatever was invited under the user's own phone number."""
    user = _get_user_or_404(user_id, session)
    return reconcile_pending_participant(user.phone_number, user.id, session)


def preview_pending_history(user_id: int, session: Session) -> dict | None:
    user = _get_user_or_404(user_id, session)
    return get_pending_member_data(user.phone_number, session)
