"""
tests/unit/test_equal_split.py — Unit tests for expense_service.compute_equal_splits.

What this file proves:
  - Equal split guarantees sum(splits) == amount for any amount and participant count
  - When amount is not evenly divisible, the remainder goes to the PAYER's split
  - When the payer is not among the participants, the first participant takes it
  - Pending participants get a share like anyone else
  - All split amounts are Decimal and ROUND_DOWN is used

Unit test constraints:
  - No database, no Flask, no auth context.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.services.expense_service import compute_equal_splits


A = ParticipantRef.user(1)
B = ParticipantRef.user(2)
C = ParticipantRef.user(3)
P = ParticipantRef.pending(1)


def _assert_sum(splits: list[dict], expected_amount: Decimal) -> None:
    total = sum(s["amount"] for s in splits)
    assert total == expected_amount, (
        f"split sum {total} != expected amount {expected_amount}"
    )


def _amount_of(splits: list[dict], ref: ParticipantRef) -> Decimal:
    return next(s["amount"] for s in splits if s["participant"] == ref)


def test_even_split_three_participants():
    amount = Decimal("1200.00")
    result = compute_equal_splits(amount, [A, B, C], payer=A)

    assert [s["amount"] for s in result] == [Decimal("400.00")] * 3
    _assert_sum(result, amount)


def test_remainder_goes_to_payer():
    """100.00 / 3 = 33.33 each, 0.01 left over → payer B gets 33.34."""
    amount = Decimal("100.00")
    result = compute_equal_splits(amount, [A, B, C], payer=B)

    assert _amount_of(result, A) == Decimal("33.33")
    assert _amount_of(result, B) == Decimal("33.34")
    assert _amount_of(result, C) == Decimal("33.33")
    _assert_sum(result, amount)


def test_payer_not_in_participants_falls_back_to_first():
    amount = Decimal("10.00")
    result = compute_equal_splits(amount, [A, B, C], payer=ParticipantRef.user(99))

    assert _amount_of(result, A) == Decimal("3.34")
    _assert_sum(result, amount)


def test_single_participant_takes_everything():
    result = compute_equal_splits(Decimal("42.42"), [A], payer=A)

    assert result == [{"participant": A, "amount": Decimal("42.42")}]


def test_pending_participant_gets_a_share():
    amount = Decimal("90.00")
    result = compute_equal_splits(amount, [A, B, P], payer=A)

    assert _amount_of(result, P) == Decimal("30.00")
    _assert_sum(result, amount)


def test_pending_payer_takes_the_remainder():
    amount = Decimal("0.05")
    result = compute_equal_splits(amount, [A, B, P], payer=P)

    assert _amount_of(result, A) == Decimal("0.01")
    assert _amount_of(result, P) == Decimal("0.03")
    _assert_sum(result, amount)


def test_one_cent_among_many():
    participants = [ParticipantRef.user(i) for i in range(1, 8)]
    result = compute_equal_splits(Decimal("0.01"), participants, payer=participants[3])

    assert _amount_of(result, participants[3]) == Decimal("0.01")
    assert sum(1 for s in result if s["amount"] == Decimal("0.00")) == 6


@pytest.mark.parametrize(
    "amount, count",
    [
        ("0.01", 2),
        ("1.00", 3),
        ("999.99", 7),
        ("1234.56", 11),
        ("9999999999.99", 13),
    ],
)
def test_sum_always_matches(amount: str, count: int):
    participants = [ParticipantRef.user(i) for i in range(1, count + 1)]
    result = compute_equal_splits(Decimal(amount), participants, payer=participants[-1])

    _assert_sum(result, Decimal(amount))
    assert all(isinstance(s["amount"], Decimal) for s in result)
    assert all(s["amount"].as_tuple().exponent >= -2 for s in result)
