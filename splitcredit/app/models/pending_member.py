"""
models/pending_member.py — PendingMember and PendingMembership tables.

A PendingMember is a phone-number contact invited into one or more groups
before registering. It takes part in balances exactly like a user, but no
settlement can be recorded for it until reconciliation resolves it onto a
registered User.

Lifecycle (status):
  invited   → participates in expenses; listed in groups' pending lists
  resolved  → reconciled; resolved_to_user_id / resolved_at are set
  removed   → withdrawn invitation (terminal)
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import ParticipantRef, enum_type


class PendingMemberStatus(str, enum.Enum):
    INVITED  = "invited"
    RESOLVED = "resolved"
    REMOVED  = "removed"


class PendingMember(db.Model):
    __tablename__ = "pending_members"

    id: Mapped[int] = mapped_column(primary_key=True)

    # E.164. Unique: one invitation record per phone number.
    phone_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
    )

    display_name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    added_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[PendingMemberStatus] = mapped_column(
        enum_type(PendingMemberStatus, "pending_member_status_enum"),
        nullable=False,
        default=PendingMemberStatus.INVITED,
        server_default=PendingMemberStatus.INVITED.value,
        index=True,
    )

    resolved_to_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group_memberships: Mapped[list["PendingMembership"]] = relationship(
        "PendingMembership",
        back_populates="pending_member",
    )

    @property
    def ref(self) -> ParticipantRef:
        return ParticipantRef.pending(self.id)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PendingMember id={self.id} "
            f"phone={self.phone_number!r} "
            f"status={self.status.value}>"
        )


class PendingMembership(db.Model):
    """A group's pending-list entry for one PendingMember."""

    __tablename__ = "pending_memberships"

    __table_args__ = (
        UniqueConstraint(
            "pending_member_id",
            "group_id",
            name="uq_pending_memberships_member_group",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    pending_member_id: Mapped[int] = mapped_column(
        ForeignKey("pending_members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    added_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    pending_member: Mapped["PendingMember"] = relationship(
        "PendingMember",
        back_populates="group_memberships",
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="pending_memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PendingMembership pending_member_id={self.pending_member_id} "
            f"group_id={self.group_id}>"
        )
