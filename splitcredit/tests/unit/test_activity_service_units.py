"""
Unit tests for activity_service: feed writes never fail the caller.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from splitcredit.app.models.activity import ActivityAction
from splitcredit.app.models.settlement import SettlementMethod
from splitcredit.app.services import activity_service


def _settlement(completed: bool) -> SimpleNamespace:
    return SimpleNamespace(
        id=12,
        group_id=3,
        amount=Decimal("250.00"),
        method=SettlementMethod.UPI,
        to_participant_id=2,
        is_completed=completed,
    )


def test_log_activity_commits_row():
    session = MagicMock()

    activity = activity_service.log_activity(
        session, 3, 1, ActivityAction.MEMBER_JOINED, "Joined",
    )

    assert activity is not None
    assert activity.details == {}
    session.add.assert_called_once_with(activity)
    session.commit.assert_called_once()


def test_log_activity_swallows_database_errors(caplog):
    session = MagicMock()
    session.commit.side_effect = OperationalError("INSERT", {}, Exception("locked"))

    with caplog.at_level(logging.WARNING, logger="splitcredit.app.services.activity_service"):
        result = activity_service.log_activity(
            session, 3, 1, ActivityAction.EXPENSE_ADDED, "Added",
        )

    assert result is None
    session.rollback.assert_called_once()
    assert "non-blocking" in caplog.text


def test_log_activity_truncates_long_descriptions():
    session = MagicMock()

    activity = activity_service.log_activity(
        session, 3, 1, ActivityAction.EXPENSE_ADDED, "x" * 600,
    )

    assert len(activity.description) == 500


def test_log_settlement_action_follows_status():
    session = MagicMock()

    confirmed = activity_service.log_settlement(session, 1, _settlement(completed=True))
    initiated = activity_service.log_settlement(session, 1, _settlement(completed=False))

    assert confirmed.action is ActivityAction.SETTLEMENT_CONFIRMED
    assert initiated.action is ActivityAction.SETTLEMENT_INITIATED
    assert confirmed.details == {"amount": "250.00", "method": "upi", "to_user_id": 2}


def test_log_member_joined_writes_one_row_per_group():
    session = MagicMock()

    activity_service.log_member_joined(session, 9, [1, 4, 6])

    assert session.add.call_count == 3
    groups = [call.args[0].group_id for call in session.add.call_args_list]
    assert groups == [1, 4, 6]
