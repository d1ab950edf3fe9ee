"""
Unit tests for balance_service data-access helpers and response builders.

These tests intentionally avoid Flask and real DB access. Every DB interaction is
mocked through a fake SQLAlchemy session object or a patched helper.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from splitcredit.app.errors import AppError, ErrorCode
from splitcredit.app.models.group import Currency
from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.services import balance_service


MODULE = "splitcredit.app.services.balance_service"

A = ParticipantRef.user(1)
B = ParticipantRef.user(2)
P = ParticipantRef.pending(1)


def _mock_scalars_all(session: MagicMock, rows: list) -> None:
    session.execute.return_value.scalars.return_value.all.return_value = rows


def _expense(payer: ParticipantRef, amount: str, shares: dict) -> SimpleNamespace:
    return SimpleNamespace(
        payer=payer,
        amount=Decimal(amount),
        splits=[
            SimpleNamespace(participant=ref, amount=Decimal(share))
            for ref, share in shares.items()
        ],
    )


# ── Data access helpers ────────────────────────────────────────────────────

def test_get_group_or_404_returns_group_when_present():
    session = MagicMock()
    group = SimpleNamespace(id=1, owner_user_id=1)
    session.get.return_value = group

    assert balance_service.get_group_or_404(group_id=1, session=session) is group


def test_get_group_or_404_raises_when_missing():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        balance_service.get_group_or_404(group_id=404, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.GROUP_NOT_FOUND
    assert err.http_status == 404


def test_get_member_ids_returns_scalars():
    session = MagicMock()
    _mock_scalars_all(session, [1, 2, 5])

    result = balance_service.get_member_ids(group_id=9, session=session)

    assert result == [1, 2, 5]
    session.execute.assert_called_once()


def test_require_member_raises_forbidden_for_non_member():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        balance_service.require_member(group_id=3, user_id=8, session=session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_require_member_passes_for_member():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(id=1)

    balance_service.require_member(group_id=3, user_id=1, session=session)


def test_get_directory_lists_users_before_pending_members():
    session = MagicMock()

    with patch(f"{MODULE}.get_member_ids", return_value=[3, 1]), \
            patch(f"{MODULE}.get_pending_member_ids", return_value=[7]):
        result = balance_service.get_directory(group_id=1, session=session)

    assert result == [
        ParticipantRef.user(3),
        ParticipantRef.user(1),
        ParticipantRef.pending(7),
    ]


def test_get_expenses_and_completed_settlements_return_rows():
    session = MagicMock()
    rows = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
    _mock_scalars_all(session, rows)

    assert balance_service.get_expenses(group_id=4, session=session) == rows
    assert balance_service.get_completed_settlements(group_id=4, session=session) == rows
    assert session.execute.call_count == 2


def test_get_participant_names_falls_back_to_reference_label():
    session = MagicMock()
    session.execute.return_value.all.side_effect = [
        [(1, "Asha")],
        [(1, "Ravi (invited)")],
    ]

    names = balance_service.get_participant_names([A, B, P], session)

    assert names[A] == "Asha"
    assert names[P] == "Ravi (invited)"
    assert names[B] == str(B)


def test_get_participant_names_skips_queries_for_empty_input():
    session = MagicMock()

    assert balance_service.get_participant_names([], session) == {}
    session.execute.assert_not_called()


# ── Response builders ──────────────────────────────────────────────────────

def _patch_group_data(directory, expenses, settlements=()):
    group = SimpleNamespace(id=1, currency=Currency.INR, owner_user_id=1)
    return [
        patch(f"{MODULE}.get_group_or_404", return_value=group),
        patch(f"{MODULE}.require_member"),
        patch(f"{MODULE}.get_directory", return_value=list(directory)),
        patch(f"{MODULE}.get_expenses", return_value=list(expenses)),
        patch(f"{MODULE}.get_completed_settlements", return_value=list(settlements)),
    ]


def _run_with(patches, fn):
    for p in patches:
        p.start()
    try:
        return fn()
    finally:
        for p in patches:
            p.stop()


def test_get_balance_response_rejects_non_zero_sum():
    # A split that does not add up to its expense is corrupt source data.
    broken = _expense(A, "100.00", {A: "50.00", B: "40.00"})
    patches = _patch_group_data([A, B], [broken])

    with pytest.raises(AppError) as exc_info:
        _run_with(patches, lambda: balance_service.get_balance_response(1, 1, MagicMock()))

    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
    assert exc_info.value.http_status == 500


def test_get_balance_response_groups_active_pending_and_former():
    former = ParticipantRef.user(9)
    expenses = [_expense(A, "90.00", {A: "30.00", P: "30.00", former: "30.00"})]
    names = {A: "Asha", P: "Ravi", former: "Old"}
    patches = _patch_group_data([A, P], expenses) + [
        patch(f"{MODULE}.get_participant_names", return_value=names),
    ]

    result = _run_with(patches, lambda: balance_service.get_balance_response(1, 1, MagicMock()))

    assert result["currency"] == "INR"
    assert [e["balance"] for e in result["active"]] == ["60.00"]
    assert result["active"][0]["status"] == "owed"
    assert result["pending"][0]["participant_kind"] == "pending"
    assert result["pending"][0]["balance"] == "-30.00"
    assert "note" in result["pending"][0]
    assert result["former"] == [{
        "participant_kind": "user",
        "participant_id": 9,
        "name": "Old",
        "balance": "-30.00",
        "status": "owes",
    }]
    assert result["summary"] == {
        "total_expenses": "90.00",
        "pending_amount": "30.00",
        "balance_sum": "0.00",
    }


def test_get_settlement_plan_separates_ready_and_blocked():
    expenses = [_expense(A, "90.00", {A: "30.00", B: "30.00", P: "30.00"})]
    names = {A: "Asha", B: "Bo", P: "Ravi"}
    patches = _patch_group_data([A, B, P], expenses) + [
        patch(f"{MODULE}.get_participant_names", return_value=names),
    ]

    result = _run_with(patches, lambda: balance_service.get_settlement_plan(1, 1, MagicMock()))

    assert result["ready"] == [{
        "from_user_id": 2,
        "from_name": "Bo",
        "to_user_id": 1,
        "to_name": "Asha",
        "amount": "30.00",
    }]
    blocked = result["pending"]
    assert len(blocked) == 1
    assert blocked[0]["direction"] == "to_pay"
    assert blocked[0]["can_settle"] is False
    assert blocked[0]["amount"] == "30.00"
