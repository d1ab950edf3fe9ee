"""
models/group.py — Group table definition.

No business logic. No imports from services or routes.

A group holds two member lists:
  memberships          registered users (Membership rows)
  pending_memberships  invited phone-number contacts (PendingMembership rows)
Reconciliation moves a participant from the second list to the first.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import enum_type


class Currency(str, enum.Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # ON DELETE RESTRICT — cannot delete a user who owns a group.
    owner_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    currency: Mapped[Currency] = mapped_column(
        enum_type(Currency, "currency_enum"),
        nullable=False,
        default=Currency.INR,
        server_default=Currency.INR.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    owner: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[owner_user_id],
    )

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
    )

    pending_memberships: Mapped[list["PendingMembership"]] = relationship(  # noqa: F821
        "PendingMembership",
        back_populates="group",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r}>"
