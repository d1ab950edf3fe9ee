"""
models/activity.py — Append-only group activity feed.

Activity rows are informational. They never take part in balance or credit
computations, and a failure to write one must not fail the operation that
produced it (see services/activity_service.py).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import enum_type


class ActivityAction(str, enum.Enum):
    EXPENSE_ADDED         = "expense_added"
    EXPENSE_DELETED       = "expense_deleted"
    SETTLEMENT_INITIATED  = "settlement_initiated"
    SETTLEMENT_CONFIRMED  = "settlement_confirmed"
    MEMBER_JOINED         = "member_joined"


class Activity(db.Model):
    __tablename__ = "activities"

    __table_args__ = (
        Index("idx_activities_group_created", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Actor.
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    action: Mapped[ActivityAction] = mapped_column(
        enum_type(ActivityAction, "activity_action_enum"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # e.g. "expense", "settlement", "user"
    target_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Activity id={self.id} "
            f"group_id={self.group_id} "
            f"action={self.action.value}>"
        )
