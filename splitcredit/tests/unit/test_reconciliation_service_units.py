"""
Unit tests for reconciliation_service transaction handling.

The happy path and a real rollback against SQLite are covered in
tests/integration/test_reconciliation.py. Here the session is a MagicMock
so the commit/rollback contract can be observed directly.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from splitcredit.app.errors import AppError, ErrorCode, ReconciliationFailure
from splitcredit.app.services import reconciliation_service


MODULE = "splitcredit.app.services.reconciliation_service"


def test_unknown_user_fails_before_any_write():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        reconciliation_service.reconcile_pending_participant("+911234567890", 42, session)

    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND
    session.execute.assert_not_called()
    session.commit.assert_not_called()
    session.rollback.assert_not_called()


def test_no_invited_record_is_a_no_op():
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=42)

    with patch(f"{MODULE}._find_invited", return_value=None):
        result = reconciliation_service.reconcile_pending_participant(
            "+911234567890", 42, session,
        )

    assert result == {
        "reconciled": False,
        "groups_joined": 0,
        "expenses_updated": 0,
        "net_balance": Decimal("0.00"),
        "group_ids": [],
    }
    session.commit.assert_called_once()


def test_failure_mid_migration_rolls_back_and_logs(caplog):
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=42)
    pending = MagicMock()

    with patch(f"{MODULE}._find_invited", return_value=pending), \
            patch(f"{MODULE}._move_group_memberships", return_value=[1, 2]), \
            patch(f"{MODULE}._rewrite_expense_references",
                  side_effect=RuntimeError("disk full")):
        with caplog.at_level(logging.ERROR, logger=MODULE):
            with pytest.raises(ReconciliationFailure) as exc_info:
                reconciliation_service.reconcile_pending_participant(
                    "+911234567890", 42, session,
                )

    err = exc_info.value
    assert err.http_status == 500
    assert err.code == ErrorCode.RECONCILIATION_FAILED
    assert err.phone_number == "+911234567890"
    assert err.user_id == 42
    assert isinstance(err.__cause__, RuntimeError)

    session.rollback.assert_called_once()
    session.commit.assert_not_called()
    assert "+911234567890" in caplog.text


def test_successful_migration_resolves_pending_record():
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=42)
    pending = MagicMock()

    with patch(f"{MODULE}._find_invited", return_value=pending), \
            patch(f"{MODULE}._move_group_memberships", return_value=[3]), \
            patch(f"{MODULE}._rewrite_expense_references",
                  return_value=(2, Decimal("-150.5"))):
        result = reconciliation_service.reconcile_pending_participant(
            "+911234567890", 42, session,
        )

    assert result == {
        "reconciled": True,
        "groups_joined": 1,
        "expenses_updated": 2,
        "net_balance": Decimal("-150.50"),
        "group_ids": [3],
    }
    assert pending.status == reconciliation_service.PendingMemberStatus.RESOLVED
    assert pending.resolved_to_user_id == 42
    assert pending.resolved_at is not None
    session.commit.assert_called_once()
    session.rollback.assert_not_called()


def test_get_pending_member_data_returns_none_without_record():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    assert reconciliation_service.get_pending_member_data("+910000000000", session) is None


def test_claim_uses_the_callers_phone_number():
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=7, phone_number="+919999999999")

    with patch(f"{MODULE}.reconcile_pending_participant", return_value={"ok": 1}) as reconcile:
        result = reconciliation_service.claim_pending_history(7, session)

    assert result == {"ok": 1}
    reconcile.assert_called_once_with("+919999999999", 7, session)
