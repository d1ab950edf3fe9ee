"""
tests/unit/test_compute_balances.py — Unit tests for balance_service.aggregate_balances
                                      and balance_service.compute_balances.

What this file proves:
  - The sum of all balances is exactly Decimal("0.00") when every split set sums
    to its expense amount
  - Payer is credited for the full expense amount they fronted
  - Each split participant is debited their split portion
  - Completed settlements credit the debtor and debit the creditor
  - Every listed participant appears in the result even at exactly zero
  - Participants outside the directory (former members) still get a balance
  - Pending participants are handled exactly like registered ones

Unit test constraints:
  - No database. DB-querying helpers are patched via unittest.mock.
  - No Flask application context.
  - Pure Python: only Decimal arithmetic and mock objects.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.services.balance_service import aggregate_balances, compute_balances


A = ParticipantRef.user(1)
B = ParticipantRef.user(2)
C = ParticipantRef.user(3)
P = ParticipantRef.pending(1)


# ── Mock factory helpers ───────────────────────────────────────────────────
# Lightweight stand-ins exposing only the attributes aggregate_balances reads.

def _split(participant: ParticipantRef, amount: str) -> MagicMock:
    s = MagicMock()
    s.participant = participant
    s.amount = Decimal(amount)
    return s


def _expense(payer: ParticipantRef, amount: str, splits: list[tuple]) -> MagicMock:
    e = MagicMock()
    e.payer = payer
    e.amount = Decimal(amount)
    e.splits = [_split(ref, amt) for ref, amt in splits]
    return e


def _settlement(debtor: ParticipantRef, creditor: ParticipantRef, amount: str) -> MagicMock:
    s = MagicMock()
    s.from_participant = debtor
    s.to_participant = creditor
    s.amount = Decimal(amount)
    return s


def _sum(balances: dict) -> Decimal:
    return sum(balances.values(), Decimal("0.00"))


# ── Tests ──────────────────────────────────────────────────────────────────

def test_no_activity_every_participant_is_zero():
    result = aggregate_balances([A, B, C], [], [])

    assert result == {A: Decimal("0.00"), B: Decimal("0.00"), C: Decimal("0.00")}


def test_empty_group_returns_empty_map():
    assert aggregate_balances([], [], []) == {}


def test_three_way_equal_split():
    """A pays 1200 split three ways: A +800, B -400, C -400."""
    expense = _expense(A, "1200.00", [(A, "400.00"), (B, "400.00"), (C, "400.00")])

    result = aggregate_balances([A, B, C], [expense], [])

    assert result[A] == Decimal("800.00")
    assert result[B] == Decimal("-400.00")
    assert result[C] == Decimal("-400.00")
    assert _sum(result) == Decimal("0.00")


def test_payer_not_in_splits_is_credited_full_amount():
    expense = _expense(A, "90.00", [(B, "45.00"), (C, "45.00")])

    result = aggregate_balances([A, B, C], [expense], [])

    assert result[A] == Decimal("90.00")
    assert result[B] == Decimal("-45.00")
    assert result[C] == Decimal("-45.00")


def test_completed_settlement_moves_both_sides():
    expense = _expense(A, "100.00", [(A, "50.00"), (B, "50.00")])
    settlement = _settlement(B, A, "30.00")

    result = aggregate_balances([A, B], [expense], [settlement])

    assert result[A] == Decimal("20.00")
    assert result[B] == Decimal("-20.00")
    assert _sum(result) == Decimal("0.00")


def test_full_settlement_zeroes_both():
    expense = _expense(A, "100.00", [(A, "50.00"), (B, "50.00")])
    settlement = _settlement(B, A, "50.00")

    result = aggregate_balances([A, B], [expense], [settlement])

    assert result[A] == Decimal("0.00")
    assert result[B] == Decimal("0.00")


def test_overpayment_flips_the_sign():
    expense = _expense(A, "100.00", [(A, "50.00"), (B, "50.00")])
    settlement = _settlement(B, A, "80.00")

    result = aggregate_balances([A, B], [expense], [settlement])

    assert result[A] == Decimal("-30.00")
    assert result[B] == Decimal("30.00")


def test_pending_participant_accumulates_like_a_user():
    """A pending member paid; registered members owe them."""
    expense = _expense(P, "60.00", [(A, "20.00"), (B, "20.00"), (P, "20.00")])

    result = aggregate_balances([A, B, P], [expense], [])

    assert result[P] == Decimal("40.00")
    assert result[A] == Decimal("-20.00")
    assert result[B] == Decimal("-20.00")
    assert _sum(result) == Decimal("0.00")


def test_former_participant_still_gets_a_balance():
    """C left the group but still holds a split in an old expense."""
    expense = _expense(A, "30.00", [(A, "10.00"), (B, "10.00"), (C, "10.00")])

    result = aggregate_balances([A, B], [expense], [])

    assert result[C] == Decimal("-10.00")
    assert _sum(result) == Decimal("0.00")


def test_zero_share_split_keeps_participant_at_zero():
    expense = _expense(A, "10.00", [(A, "10.00"), (B, "0.00")])

    result = aggregate_balances([A, B], [expense], [])

    assert result[A] == Decimal("0.00")
    assert result[B] == Decimal("0.00")


def test_many_expenses_sum_to_zero():
    expenses = [
        _expense(A, "33.33", [(A, "11.11"), (B, "11.11"), (C, "11.11")]),
        _expense(B, "0.03",  [(A, "0.01"), (B, "0.01"), (C, "0.01")]),
        _expense(C, "250.00", [(A, "125.00"), (C, "125.00")]),
    ]
    settlements = [_settlement(A, C, "100.00"), _settlement(B, A, "5.55")]

    result = aggregate_balances([A, B, C], expenses, settlements)

    assert _sum(result) == Decimal("0.00")


def test_result_values_are_decimal():
    expense = _expense(A, "10.00", [(A, "5.00"), (B, "5.00")])

    result = aggregate_balances([A, B], [expense], [])

    assert all(isinstance(v, Decimal) for v in result.values())


def test_compute_balances_reads_directory_expenses_and_completed_settlements():
    expense = _expense(A, "20.00", [(A, "10.00"), (B, "10.00")])

    with patch(
        "splitcredit.app.services.balance_service.get_directory",
        return_value=[A, B],
    ) as directory, patch(
        "splitcredit.app.services.balance_service.get_expenses",
        return_value=[expense],
    ), patch(
        "splitcredit.app.services.balance_service.get_completed_settlements",
        return_value=[],
    ):
        session = MagicMock()
        result = compute_balances(group_id=5, session=session)

    directory.assert_called_once_with(5, session)
    assert result == {A: Decimal("10.00"), B: Decimal("-10.00")}
