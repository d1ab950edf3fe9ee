"""
services/balance_service.py — Balance computation and settlement matching.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The canonical formula must not be reimplemented elsewhere in the codebase.
Reconciliation's net_balance summary and the overpayment check in
settlement_service.py both call into aggregate_balances().

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id (int) and session (SQLAlchemy Session) as arguments.
  - aggregate_balances() and match_settlements() are pure: they take plain
    iterables and return plain values, and are unit-tested without a DB.

Balance conservation:
  Every expense credits its payer by `amount` and debits its splits by
  amounts that sum to exactly `amount`; every completed settlement credits
  one side and debits the other by the same value. The sum over all
  participants is therefore exactly zero, and get_balance_response() turns
  any other result into a 500.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from splitcredit.app.errors import AppError, ErrorCode
from splitcredit.app.models.expense import Expense
from splitcredit.app.models.group import Group
from splitcredit.app.models.membership import Membership
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef
from splitcredit.app.models.pending_member import (
    PendingMember,
    PendingMembership,
    PendingMemberStatus,
)
from splitcredit.app.models.settlement import Settlement, SettlementStatus
from splitcredit.app.models.user import User


ZERO = Decimal("0.00")
CENT = Decimal("0.01")

TO_RECEIVE = "to_receive"
TO_PAY     = "to_pay"


# ── Result types ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Transfer:
    """One suggested payment between two registered users."""
    from_participant: ParticipantRef
    to_participant: ParticipantRef
    amount: Decimal


@dataclass(frozen=True)
class PendingClaim:
    """A pending participant's non-zero balance. Cannot be settled yet."""
    participant: ParticipantRef
    amount: Decimal     # absolute value
    direction: str      # TO_RECEIVE or TO_PAY


@dataclass
class MatchResult:
    ready: list[Transfer] = field(default_factory=list)
    blocked: list[PendingClaim] = field(default_factory=list)


# ── Data access helpers ────────────────────────────────────────────────────
# The participant directory, expense store and settlement store reads used
# for balance purposes. Expenses and completed settlements are read inside
# the same transaction, so under REPEATABLE READ they come from one snapshot.

def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def get_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all current members of a group, in join order."""
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.id)
    )
    return list(session.execute(stmt).scalars().all())


def require_member(group_id: int, user_id: int, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


def get_pending_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the ids of the group's still-invited pending members, in order added."""
    stmt = (
        select(PendingMembership.pending_member_id)
        .join(PendingMember, PendingMember.id == PendingMembership.pending_member_id)
        .where(
            PendingMembership.group_id == group_id,
            PendingMember.status == PendingMemberStatus.INVITED,
        )
        .order_by(PendingMembership.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_directory(group_id: int, session: Session) -> list[ParticipantRef]:
    """
    The group's current participants: registered members first, then
    pending members. This order is the matcher's tie-break order.
    """
    return (
        [ParticipantRef.user(uid) for uid in get_member_ids(group_id, session)]
        + [ParticipantRef.pending(pid) for pid in get_pending_member_ids(group_id, session)]
    )


def get_expenses(group_id: int, session: Session) -> list[Expense]:
    """Returns every expense of a group with its splits eagerly loaded."""
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(Expense.group_id == group_id)
        .order_by(Expense.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_completed_settlements(group_id: int, session: Session) -> list[Settlement]:
    """Pending settlements never move balances; only completed ones are read."""
    stmt = (
        select(Settlement)
        .where(
            Settlement.group_id == group_id,
            Settlement.status == SettlementStatus.COMPLETED,
        )
        .order_by(Settlement.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_participant_names(
        refs: Iterable[ParticipantRef],
        session: Session,
) -> dict[ParticipantRef, str]:
    """Labels for display: User.name or PendingMember.display_name."""
    refs = list(refs)
    user_ids = [r.id for r in refs if r.kind is ParticipantKind.USER]
    pending_ids = [r.id for r in refs if r.kind is ParticipantKind.PENDING]

    names: dict[ParticipantRef, str] = {}
    if user_ids:
        rows = session.execute(
            select(User.id, User.name).where(User.id.in_(user_ids))
        ).all()
        names.update({ParticipantRef.user(uid): name for uid, name in rows})
    if pending_ids:
        rows = session.execute(
            select(PendingMember.id, PendingMember.display_name)
            .where(PendingMember.id.in_(pending_ids))
        ).all()
        names.update({ParticipantRef.pending(pid): name for pid, name in rows})

    return {ref: names.get(ref, str(ref)) for ref in refs}


# ── Core algorithms ────────────────────────────────────────────────────────

def aggregate_balances(
        participants: Iterable[ParticipantRef],
        expenses: Iterable,
        completed_settlements: Iterable,
) -> dict[ParticipantRef, Decimal]:
    """
    Canonical balance computation. Pure.

    Returns {participant: net_balance}. Positive means the participant is
    owed money, negative means they owe.

    Algorithm:
      1. Every known participant starts at exactly zero.
      2. Credit each expense payer for the full amount they fronted.
      3. Debit each split participant for their share.
      4. Completed settlements: credit the debtor, debit the creditor.

    Participants referenced by an expense or settlement but missing from
    `participants` (they left the group) still get a balance. Accumulation
    is exact; nothing is rounded here.
    """
    balances: dict[ParticipantRef, Decimal] = {ref: ZERO for ref in participants}

    for expense in expenses:
        balances[expense.payer] = balances.get(expense.payer, ZERO) + expense.amount
        for split in expense.splits:
            balances[split.participant] = balances.get(split.participant, ZERO) - split.amount

    for settlement in completed_settlements:
        debtor, creditor = settlement.from_participant, settlement.to_participant
        balances[debtor] = balances.get(debtor, ZERO) + settlement.amount
        balances[creditor] = balances.get(creditor, ZERO) - settlement.amount

    return balances


def match_settlements(
        balances: dict[ParticipantRef, Decimal],
        current_participants: Iterable[ParticipantRef],
) -> MatchResult:
    """
    Greedy minimum cash flow matching over registered users.

    Only participants in `current_participants` are considered, in that
    order. Pending participants with a non-zero balance become blocked
    PendingClaims. Registered creditors and debtors are each sorted
    descending by amount; sorted() is stable, so equal amounts keep
    directory order and the output is deterministic.

    The two-pointer walk transfers min(debt, credit) between the current
    largest debtor and creditor and advances past whichever side reaches
    zero. Every transfer exhausts at least one side, so the plan has at
    most len(debtors) + len(creditors) - 1 entries. Original debt pairings
    are not preserved.

    If registered totals do not cancel (pending balances absorb the rest),
    the walk stops when either side runs out.
    """
    result = MatchResult()
    creditors: list[tuple[ParticipantRef, Decimal]] = []
    debtors: list[tuple[ParticipantRef, Decimal]] = []

    seen: set[ParticipantRef] = set()
    for ref in current_participants:
        if ref in seen:
            continue
        seen.add(ref)

        balance = balances.get(ref, ZERO)
        if ref.is_pending:
            if balance != ZERO:
                result.blocked.append(PendingClaim(
                    participant=ref,
                    amount=abs(balance),
                    direction=TO_RECEIVE if balance > ZERO else TO_PAY,
                ))
        elif balance > ZERO:
            creditors.append((ref, balance))
        elif balance < ZERO:
            debtors.append((ref, -balance))

    creditors = sorted(creditors, key=lambda x: x[1], reverse=True)
    debtors = sorted(debtors, key=lambda x: x[1], reverse=True)

    i = j = 0
    while i < len(creditors) and j < len(debtors):
        creditor, credit = creditors[i]
        debtor, debt = debtors[j]

        amount = min(credit, debt)
        if amount > ZERO:
            result.ready.append(Transfer(debtor, creditor, amount))

        creditors[i] = (creditor, credit - amount)
        debtors[j] = (debtor, debt - amount)

        if creditors[i][1] == ZERO:
            i += 1
        if debtors[j][1] == ZERO:
            j += 1

    return result


def compute_balances(group_id: int, session: Session) -> dict[ParticipantRef, Decimal]:
    """
    Balances for every current participant of a group plus any former ones.
    Used by the overpayment check; the response builders below call
    aggregate_balances() themselves because they also need the directory.
    """
    return aggregate_balances(
        get_directory(group_id, session),
        get_expenses(group_id, session),
        get_completed_settlements(group_id, session),
    )


# ── Response builders ──────────────────────────────────────────────────────

def _display(amount: Decimal) -> Decimal:
    return amount.quantize(CENT)


def _status(balance: Decimal) -> str:
    if balance > ZERO:
        return "owed"
    if balance < ZERO:
        return "owes"
    return "settled"


def _balance_entry(ref: ParticipantRef, name: str, balance: Decimal) -> dict:
    return {
        **ref.to_dict(),
        "name": name,
        "balance": str(_display(balance)),
        "status": _status(balance),
    }


def get_balance_response(
        group_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Balances are split into:
      active   current registered members
      pending  current pending members (confirmed on registration)
      former   participants who left but still carry expense history

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  group does not exist.
        AppError(FORBIDDEN, 403)        caller not a group member.
        AppError(INTERNAL_ERROR, 500)   balances do not sum to zero.
    """
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    directory = get_directory(group_id, session)
    expenses = get_expenses(group_id, session)
    balances = aggregate_balances(
        directory,
        expenses,
        get_completed_settlements(group_id, session),
    )

    balance_sum = sum(balances.values(), ZERO)
    if balance_sum != ZERO:
        # Source data is corrupt. The error handler will log the full context.
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Balance integrity check failed: sum was {balance_sum} (expected 0.00). "
            f"Group {group_id} has inconsistent financial data.",
            500,
        )

    names = get_participant_names(balances.keys(), session)
    current = set(directory)

    active, pending, former = [], [], []
    for ref in directory:
        entry = _balance_entry(ref, names[ref], balances[ref])
        if ref.is_pending:
            entry["note"] = "Balance will be confirmed when the member registers."
            pending.append(entry)
        else:
            active.append(entry)
    for ref, balance in balances.items():
        if ref not in current:
            former.append(_balance_entry(ref, names[ref], balance))

    pending_amount = sum(
        (abs(balances[ref]) for ref in directory if ref.is_pending),
        ZERO,
    )

    return {
        "group_id": group_id,
        "currency": group.currency.value,
        "active": active,
        "pending": pending,
        "former": former,
        "summary": {
            "total_expenses": str(_display(sum((e.amount for e in expenses), ZERO))),
            "pending_amount": str(_display(pending_amount)),
            "balance_sum": str(_display(balance_sum)),
        },
    }


def get_settlement_plan(
        group_id: int,
        caller_id: int,
        session: Session,
) -> dict:
    """
    Builds the payload for GET /groups/:id/settlements/suggested.

    ready    transfers between registered members that zero their balances
    pending  blocked claims for pending members, settleable after they register
    """
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    directory = get_directory(group_id, session)
    balances = aggregate_balances(
        directory,
        get_expenses(group_id, session),
        get_completed_settlements(group_id, session),
    )
    matched = match_settlements(balances, directory)
    names = get_participant_names(directory, session)

    return {
        "group_id": group_id,
        "ready": [
            {
                "from_user_id": t.from_participant.id,
                "from_name": names[t.from_participant],
                "to_user_id": t.to_participant.id,
                "to_name": names[t.to_participant],
                "amount": str(_display(t.amount)),
            }
            for t in matched.ready
        ],
        "pending": [
            {
                **c.participant.to_dict(),
                "name": names[c.participant],
                "amount": str(_display(c.amount)),
                "direction": c.direction,
                "can_settle": False,
                "reason": f"Waiting for {names[c.participant]} to register.",
            }
            for c in matched.blocked
        ],
    }
