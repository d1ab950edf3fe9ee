"""
models/credit_state.py — Per-user credit score state.

One row per registered user, created on the first scoring event. Mutated
only by services/credit_score_service.py.

Concurrency:
  `version` is the mapper's version_id_col. Every UPDATE is issued as
  "... WHERE user_id = :id AND version = :seen", so a concurrent writer that
  changed the row first makes the flush raise StaleDataError. The credit
  service turns that into ConcurrencyConflict and the request is retried.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitcredit.app.extensions import db


SCORE_MIN     = 300
SCORE_MAX     = 900
INITIAL_SCORE = 700


class CreditState(db.Model):
    __tablename__ = "user_credit_states"

    __table_args__ = (
        CheckConstraint(
            f"score BETWEEN {SCORE_MIN} AND {SCORE_MAX}",
            name="ck_user_credit_states_score_range",
        ),
        CheckConstraint(
            "consecutive_on_time >= 0",
            name="ck_user_credit_states_streak",
        ),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    score: Mapped[int] = mapped_column(Integer, nullable=False)

    # Unbroken streak of positive, non-bonus scoring events.
    consecutive_on_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="credit_state",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<CreditState user_id={self.user_id} "
            f"score={self.score} "
            f"streak={self.consecutive_on_time}>"
        )
