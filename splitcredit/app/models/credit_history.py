"""
models/credit_history.py — Append-only credit score audit log.

Every credit score mutation writes exactly one CreditHistory row. Rows are
never updated or deleted.

Duplicate suppression:
  `dedupe_key` is "<settlement_id>:<reason>" for settlement-related events
  and NULL otherwise. UNIQUE(user_id, dedupe_key) lets the database reject a
  second (user, settlement, reason) record even when two requests pass the
  application-level "not found" check at the same time. NULL keys never
  collide, so events without a settlement are unconstrained.

  reminder_ignored is the one settlement-related reason with a NULL key:
  every ignored reminder on the same settlement is its own event.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import enum_type


class CreditReason(str, enum.Enum):
    ON_TIME_SETTLEMENT   = "on_time_settlement"    # settled within 1 day  → +10
    SETTLEMENT_WITHIN_3D = "settlement_within_3d"  # settled within 3 days → +5
    CONSECUTIVE_BONUS    = "consecutive_bonus"     # 5 positive in a row   → +20
    DELAYED_GT3          = "delayed_gt3"           # more than 3 days late → -15
    DELAYED_GT7          = "delayed_gt7"           # more than 7 days late → -25
    DELAYED_GT15         = "delayed_gt15"          # more than 15 days     → -40
    REMINDER_IGNORED     = "reminder_ignored"      # reminder not acted on → -10


# Reasons that may repeat for the same settlement.
NON_DEDUPED_REASONS = frozenset({CreditReason.REMINDER_IGNORED})


def make_dedupe_key(reason: CreditReason, related_settlement_id: int | None) -> str | None:
    if related_settlement_id is None or reason in NON_DEDUPED_REASONS:
        return None
    return f"{related_settlement_id}:{reason.value}"


class CreditHistory(db.Model):
    __tablename__ = "credit_history"

    __table_args__ = (
        UniqueConstraint("user_id", "dedupe_key", name="uq_credit_history_dedupe"),
        Index("idx_credit_history_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    old_score: Mapped[int] = mapped_column(Integer, nullable=False)
    new_score: Mapped[int] = mapped_column(Integer, nullable=False)

    # Post-clamp delta; zero when the score was already at a bound.
    change_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[CreditReason] = mapped_column(
        enum_type(CreditReason, "credit_reason_enum"),
        nullable=False,
    )

    related_settlement_id: Mapped[int | None] = mapped_column(
        ForeignKey("settlements.id", ondelete="RESTRICT"),
        nullable=True,
    )

    dedupe_key: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "old_score": self.old_score,
            "new_score": self.new_score,
            "change_amount": self.change_amount,
            "reason": self.reason.value,
            "related_settlement_id": self.related_settlement_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<CreditHistory id={self.id} "
            f"user_id={self.user_id} "
            f"reason={self.reason.value} "
            f"change={self.change_amount}>"
        )
