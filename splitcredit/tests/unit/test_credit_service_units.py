"""
Unit tests for credit_score_service guard branches and error translation.

Scoring arithmetic against real rows lives in
tests/integration/test_credit_engine.py.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from splitcredit.app.errors import AppError, ConcurrencyConflict, ErrorCode
from splitcredit.app.models.credit_state import CreditState
from splitcredit.app.models.participant import ParticipantKind
from splitcredit.app.models.user import User
from splitcredit.app.services import credit_score_service


def _settlement(**overrides) -> SimpleNamespace:
    values = {
        "id": 5,
        "from_participant_kind": ParticipantKind.USER,
        "from_participant_id": 2,
        "is_completed": False,
        "reminder_count": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_flush_translates_stale_data_into_conflict():
    session = MagicMock()
    session.flush.side_effect = StaleDataError("version 3 expected")

    with pytest.raises(ConcurrencyConflict) as exc_info:
        credit_score_service._flush(session, user_id=4)

    assert exc_info.value.http_status == 409


def test_flush_translates_dedupe_race_into_conflict():
    session = MagicMock()
    session.flush.side_effect = IntegrityError("INSERT", {}, Exception("unique"))

    with pytest.raises(ConcurrencyConflict):
        credit_score_service._flush(session, user_id=4)


def test_apply_score_event_unknown_user():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_score_event(404, "on_time_settlement", session)

    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND
    session.add.assert_not_called()


def test_apply_score_event_rejects_unknown_reason_before_reading():
    session = MagicMock()

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_score_event(1, "bribe", session)

    assert exc_info.value.code == ErrorCode.INVALID_CREDIT_REASON
    session.get.assert_not_called()


def test_reminder_penalty_missing_settlement():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_reminder_ignored_penalty(2, 5, session)

    assert exc_info.value.code == ErrorCode.SETTLEMENT_NOT_FOUND


def test_reminder_penalty_only_for_the_debtor():
    session = MagicMock()
    session.get.return_value = _settlement(from_participant_id=3)

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_reminder_ignored_penalty(2, 5, session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_reminder_penalty_not_for_pending_member_debts():
    session = MagicMock()
    session.get.return_value = _settlement(from_participant_kind=ParticipantKind.PENDING)

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_reminder_ignored_penalty(2, 5, session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN


def test_reminder_penalty_rejects_completed_settlement():
    session = MagicMock()
    settlement = _settlement(is_completed=True)
    session.get.return_value = settlement

    with pytest.raises(AppError) as exc_info:
        credit_score_service.apply_reminder_ignored_penalty(2, 5, session)

    assert exc_info.value.code == ErrorCode.SETTLEMENT_ALREADY_COMPLETED
    assert settlement.reminder_count == 0


def test_get_credit_score_defaults_to_initial_score():
    session = MagicMock()
    session.get.side_effect = lambda model, key: (
        SimpleNamespace(id=key) if model is User else None
    )

    result = credit_score_service.get_credit_score(8, session)

    assert result == {
        "user_id": 8,
        "score": 700,
        "consecutive_on_time": 0,
        "tier": "good",
    }


def test_get_credit_score_reads_state():
    session = MagicMock()
    state = SimpleNamespace(score=820, consecutive_on_time=3)
    session.get.side_effect = lambda model, key: (
        state if model is CreditState else SimpleNamespace(id=key)
    )

    result = credit_score_service.get_credit_score(8, session)

    assert result["score"] == 820
    assert result["tier"] == "excellent"
    assert result["consecutive_on_time"] == 3


def test_score_result_to_dict():
    result = credit_score_service.ScoreResult(
        700, 710, 10, credit_score_service.CreditReason.ON_TIME_SETTLEMENT,
    )

    assert result.to_dict() == {
        "old_score": 700,
        "new_score": 710,
        "change_amount": 10,
        "reason": "on_time_settlement",
        "duplicate": False,
        "bonus_awarded": False,
    }
