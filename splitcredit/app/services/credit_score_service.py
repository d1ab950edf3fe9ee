"""
services/credit_score_service.py — Credit score engine and delay penalty scanner.

Scoring rules (fixed, not configurable):
  on_time_settlement    settled within 1 day   +10
  settlement_within_3d  settled within 3 days   +5
  consecutive_bonus     5 positive in a row    +20
  delayed_gt3           more than 3 days late  -15
  delayed_gt7           more than 7 days late  -25
  delayed_gt15          more than 15 days late -40
  reminder_ignored      reminder not acted on  -10

The score is clamped to [300, 900]. Every non-duplicate event appends one
CreditHistory row carrying the post-clamp delta, in the same transaction
as the CreditState update.

Concurrency:
  CreditState is read with SELECT ... FOR UPDATE (a no-op on SQLite) and
  written with an optimistic version check (version_id_col). A lost update
  or a lost race on the dedupe key raises ConcurrencyConflict from the
  flush; routes retry through services/transactions.run_in_transaction().

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the caller's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from splitcredit.app.errors import AppError, ConcurrencyConflict, ErrorCode
from splitcredit.app.models.credit_history import CreditHistory, CreditReason, make_dedupe_key
from splitcredit.app.models.credit_state import INITIAL_SCORE, SCORE_MAX, SCORE_MIN, CreditState
from splitcredit.app.models.participant import ParticipantKind
from splitcredit.app.models.settlement import Settlement, SettlementStatus
from splitcredit.app.models.user import User


logger = logging.getLogger(__name__)


SCORE_DELTAS: dict[CreditReason, int] = {
    CreditReason.ON_TIME_SETTLEMENT:   +10,
    CreditReason.SETTLEMENT_WITHIN_3D: +5,
    CreditReason.CONSECUTIVE_BONUS:    +20,
    CreditReason.DELAYED_GT3:          -15,
    CreditReason.DELAYED_GT7:          -25,
    CreditReason.DELAYED_GT15:         -40,
    CreditReason.REMINDER_IGNORED:     -10,
}

STREAK_LENGTH = 5

# Highest first. The scanner applies the first tier crossed but not yet penalised.
DELAY_TIERS: tuple[tuple[int, CreditReason], ...] = (
    (15, CreditReason.DELAYED_GT15),
    (7,  CreditReason.DELAYED_GT7),
    (3,  CreditReason.DELAYED_GT3),
)

SECONDS_PER_DAY = 24 * 60 * 60


# ── Result types ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScoreResult:
    old_score: int
    new_score: int
    change_amount: int
    reason: CreditReason
    duplicate: bool = False
    bonus_awarded: bool = False

    def to_dict(self) -> dict:
        return {
            "old_score": self.old_score,
            "new_score": self.new_score,
            "change_amount": self.change_amount,
            "reason": self.reason.value,
            "duplicate": self.duplicate,
            "bonus_awarded": self.bonus_awarded,
        }


@dataclass(frozen=True)
class PenaltyResult:
    settlement_id: int
    days_delayed: int
    tier: int
    score: ScoreResult

    def to_dict(self) -> dict:
        return {
            "settlement_id": self.settlement_id,
            "days_delayed": self.days_delayed,
            "tier": self.tier,
            **self.score.to_dict(),
        }


# ── Pure rules ─────────────────────────────────────────────────────────────

def clamp_score(score: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, score))


def reason_for_delay(days_delayed: int) -> CreditReason:
    """Exactly one reason per settlement-completion event; no stacking."""
    if days_delayed <= 1:
        return CreditReason.ON_TIME_SETTLEMENT
    if days_delayed <= 3:
        return CreditReason.SETTLEMENT_WITHIN_3D
    if days_delayed <= 7:
        return CreditReason.DELAYED_GT3
    if days_delayed <= 15:
        return CreditReason.DELAYED_GT7
    return CreditReason.DELAYED_GT15


def credit_tier(score: int) -> str:
    if score >= 800:
        return "excellent"
    if score >= 650:
        return "good"
    if score >= 500:
        return "risky"
    return "unreliable"


def as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed, floored. Never negative."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def parse_reason(value) -> CreditReason:
    """Raises INVALID_CREDIT_REASON (400) for an unknown reason code."""
    try:
        return CreditReason(value)
    except ValueError:
        raise AppError(
            ErrorCode.INVALID_CREDIT_REASON,
            f"'{value}' is not a valid credit score reason.",
            400,
            field="reason",
        )


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


def _get_settlement_or_404(settlement_id: int, session: Session) -> Settlement:
    settlement = session.get(Settlement, settlement_id, with_for_update=True)
    if settlement is None:
        raise AppError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} does not exist.",
            404,
        )
    return settlement


def _flush(session: Session, user_id: int) -> None:
    """Flushes score writes, translating lost updates into ConcurrencyConflict."""
    try:
        session.flush()
    except StaleDataError as error:
        raise ConcurrencyConflict(
            f"Credit state for user {user_id} was modified concurrently."
        ) from error
    except IntegrityError as error:
        # Dedupe-key race or two first-time state inserts for the same user.
        raise ConcurrencyConflict(
            f"Concurrent credit event for user {user_id}."
        ) from error


def _load_state(user_id: int, session: Session) -> CreditState:
    """Locks and returns the user's CreditState, creating it at 700 on first use."""
    state = session.execute(
        select(CreditState)
        .where(CreditState.user_id == user_id)
        .with_for_update()
    ).scalar_one_or_none()

    if state is None:
        state = CreditState(
            user_id=user_id,
            score=INITIAL_SCORE,
            consecutive_on_time=0,
        )
        session.add(state)
        _flush(session, user_id)
    return state


def _is_duplicate(
        user_id: int,
        reason: CreditReason,
        related_settlement_id: int | None,
        session: Session,
) -> bool:
    dedupe_key = make_dedupe_key(reason, related_settlement_id)
    if dedupe_key is None:
        return False
    existing = session.execute(
        select(CreditHistory.id).where(
            CreditHistory.user_id == user_id,
            CreditHistory.dedupe_key == dedupe_key,
        )
    ).first()
    return existing is not None


def _apply_delta(
        state: CreditState,
        reason: CreditReason,
        related_settlement_id: int | None,
        session: Session,
) -> None:
    """Clamp, append the audit record, update the streak."""
    delta = SCORE_DELTAS[reason]
    old_score = state.score
    new_score = clamp_score(old_score + delta)

    session.add(CreditHistory(
        user_id=state.user_id,
        old_score=old_score,
        new_score=new_score,
        change_amount=new_score - old_score,
        reason=reason,
        related_settlement_id=related_settlement_id,
        dedupe_key=make_dedupe_key(reason, related_settlement_id),
    ))
    state.score = new_score

    if delta > 0 and reason is not CreditReason.CONSECUTIVE_BONUS:
        state.consecutive_on_time += 1
    elif delta < 0:
        state.consecutive_on_time = 0


# ── Public service functions ───────────────────────────────────────────────

def apply_score_event(
        user_id: int,
        reason: CreditReason | str,
        session: Session,
        related_settlement_id: int | None = None,
) -> ScoreResult:
    """
    Applies one scoring event to a user's credit state.

    Steps:
      1. Duplicate check on (user, settlement, reason). A duplicate returns
         duplicate=True with zero change and mutates nothing.
      2. Clamp old_score + delta into [300, 900].
      3. Append the audit record with the post-clamp delta, even when it
         is zero.
      4. Streak: +1 on a positive non-bonus event, reset on a negative one,
         unchanged by the bonus itself.
      5. A streak of 5 resets to 0 and applies one consecutive_bonus tagged
         with the same settlement. The bonus cannot trigger another bonus.

    Returns the combined change of the event and any bonus.

    Raises:
        AppError(INVALID_CREDIT_REASON, 400)
        AppError(USER_NOT_FOUND, 404)
        ConcurrencyConflict (409) on a lost update
    """
    reason = parse_reason(reason)
    _get_user_or_404(user_id, session)

    state = _load_state(user_id, session)
    old_score = state.score

    if _is_duplicate(user_id, reason, related_settlement_id, session):
        logger.info(
            "Duplicate credit event ignored: user=%s reason=%s settlement=%s",
            user_id, reason.value, related_settlement_id,
        )
        return ScoreResult(old_score, old_score, 0, reason, duplicate=True)

    bonus_awarded = False
    current = reason
    for _ in range(2):
        _apply_delta(state, current, related_settlement_id, session)
        if state.consecutive_on_time < STREAK_LENGTH:
            break
        state.consecutive_on_time = 0
        current = CreditReason.CONSECUTIVE_BONUS
        if _is_duplicate(user_id, current, related_settlement_id, session):
            break
        bonus_awarded = True

    _flush(session, user_id)

    logger.info(
        "Credit score updated: user=%s reason=%s %s -> %s%s",
        user_id, reason.value, old_score, state.score,
        " (streak bonus)" if bonus_awarded else "",
    )
    return ScoreResult(
        old_score=old_score,
        new_score=state.score,
        change_amount=state.score - old_score,
        reason=reason,
        bonus_awarded=bonus_awarded,
    )


def score_settlement(
        user_id: int,
        days_delayed: int,
        settlement_id: int,
        session: Session,
) -> ScoreResult:
    """Scores a completed settlement for its debtor by how late it was."""
    return apply_score_event(
        user_id,
        reason_for_delay(days_delayed),
        session,
        related_settlement_id=settlement_id,
    )


def apply_reminder_ignored_penalty(
        user_id: int,
        settlement_id: int,
        session: Session,
) -> ScoreResult:
    """
    Applies the -10 reminder_ignored penalty to the settlement's debtor.

    Never deduplicated: each ignored reminder is its own audit record.
    Increments the settlement's reminder_count.

    Raises:
        AppError(SETTLEMENT_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403)                     user is not the debtor
        AppError(SETTLEMENT_ALREADY_COMPLETED, 422)  nothing left to remind about
    """
    settlement = _get_settlement_or_404(settlement_id, session)

    if settlement.from_participant_kind is not ParticipantKind.USER \
            or settlement.from_participant_id != user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not the debtor on settlement {settlement_id}.",
            403,
        )

    if settlement.is_completed:
        raise AppError(
            ErrorCode.SETTLEMENT_ALREADY_COMPLETED,
            f"Settlement {settlement_id} is already completed.",
            422,
            field="settlement_id",
        )

    settlement.reminder_count += 1
    return apply_score_event(
        user_id,
        CreditReason.REMINDER_IGNORED,
        session,
        related_settlement_id=settlement.id,
    )


def scan_pending_delays(
        user_id: int,
        session: Session,
        now: datetime | None = None,
) -> list[PenaltyResult]:
    """
    Escalates penalties on the user's pending settlements as they age.

    For each pending settlement where the user is the debtor, takes
    days = floor((now - created_at) / 1 day) and applies the first tier
    (15, then 7, then 3) with days >= tier and last_penalty_tier < tier.
    At most one tier per settlement per scan, so a settlement first seen at
    day 20 is charged delayed_gt15 only. last_penalty_tier is raised only
    when the event was not a duplicate.

    Completed settlements never age and are not read.
    """
    now = now or datetime.now(timezone.utc)

    pending = session.execute(
        select(Settlement)
        .where(
            Settlement.from_participant_kind == ParticipantKind.USER,
            Settlement.from_participant_id == user_id,
            Settlement.status == SettlementStatus.PENDING,
        )
        .order_by(Settlement.id)
        .with_for_update()
    ).scalars().all()

    results: list[PenaltyResult] = []
    for settlement in pending:
        days = days_between(settlement.created_at, now)

        for tier, reason in DELAY_TIERS:
            if days >= tier and settlement.last_penalty_tier < tier:
                score = apply_score_event(
                    user_id,
                    reason,
                    session,
                    related_settlement_id=settlement.id,
                )
                if not score.duplicate:
                    settlement.last_penalty_tier = tier
                results.append(PenaltyResult(settlement.id, days, tier, score))
                break

    session.flush()
    return results


def scan_all_pending_delays(
        session: Session,
        now: datetime | None = None,
) -> list[PenaltyResult]:
    """Runs scan_pending_delays() for every registered user with a pending debt."""
    debtor_ids = session.execute(
        select(Settlement.from_participant_id)
        .where(
            Settlement.from_participant_kind == ParticipantKind.USER,
            Settlement.status == SettlementStatus.PENDING,
        )
        .distinct()
        .order_by(Settlement.from_participant_id)
    ).scalars().all()

    results: list[PenaltyResult] = []
    for debtor_id in debtor_ids:
        results.extend(scan_pending_delays(debtor_id, session, now=now))
    return results


def get_credit_score(user_id: int, session: Session) -> dict:
    """Current score, streak and tier. Users with no events read as 700."""
    _get_user_or_404(user_id, session)
    state = session.get(CreditState, user_id)

    score = state.score if state else INITIAL_SCORE
    return {
        "user_id": user_id,
        "score": score,
        "consecutive_on_time": state.consecutive_on_time if state else 0,
        "tier": credit_tier(score),
    }


def get_credit_history(
        user_id: int,
        session: Session,
        limit: int = 20,
        skip: int = 0,
) -> dict:
    """Newest-first page of the user's audit records."""
    _get_user_or_404(user_id, session)

    rows = session.execute(
        select(CreditHistory)
        .where(CreditHistory.user_id == user_id)
        .order_by(CreditHistory.created_at.desc(), CreditHistory.id.desc())
        .offset(skip)
        .limit(limit)
    ).scalars().all()

    total = session.execute(
        select(func.count()).select_from(CreditHistory).where(CreditHistory.user_id == user_id)
    ).scalar_one()

    return {
        "history": [row.to_dict() for row in rows],
        "total": total,
        "has_more": skip + len(rows) < total,
    }
