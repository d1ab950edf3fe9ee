"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - The payer is polymorphic: (payer_kind, payer_id) may point at a User
    or at a PendingMember. `payer` exposes the pair as a ParticipantRef.
  - Expenses are immutable once written. Deletion is a hard delete; the
    splits go with it (ON DELETE CASCADE + delete-orphan).
  - `has_pending_participants` is maintained by the services that write
    splits (create_expense, reconciliation) so pending-heavy expenses can
    be found without scanning splits.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef, enum_type


class SplitMode(str, enum.Enum):
    EQUAL  = "equal"
    CUSTOM = "custom"


class Category(str, enum.Enum):
    FOOD          = "food"
    TRANSPORT     = "transport"
    ENTERTAINMENT = "entertainment"
    UTILITIES     = "utilities"
    RENT          = "rent"
    SHOPPING      = "shopping"
    HEALTH        = "health"
    OTHER         = "other"


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_expenses_title_nonempty",
        ),
        Index("idx_expenses_payer", "payer_kind", "payer_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE RESTRICT — cannot delete a group that has expenses.
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # NUMERIC(12, 2). Input with >2 decimal places is rejected by the
    # schema (INVALID_AMOUNT_PRECISION), not rounded.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # Polymorphic payer. No FK: the target table depends on payer_kind.
    payer_kind: Mapped[ParticipantKind] = mapped_column(
        enum_type(ParticipantKind, "participant_kind_enum"),
        nullable=False,
    )
    payer_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    split_mode: Mapped[SplitMode] = mapped_column(
        enum_type(SplitMode, "split_mode_enum"),
        nullable=False,
        default=SplitMode.EQUAL,
        server_default=SplitMode.EQUAL.value,
    )

    category: Mapped[Category] = mapped_column(
        enum_type(Category, "category_enum"),
        nullable=False,
        default=Category.OTHER,
        server_default=Category.OTHER.value,
    )

    has_pending_participants: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
        index=True,
    )

    created_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship("Group")  # noqa: F821

    # ON DELETE CASCADE — splits are owned by their expense.
    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="Split.id",
    )

    # ── Participant accessors ──────────────────────────────────────────────

    @property
    def payer(self) -> ParticipantRef:
        return ParticipantRef(self.payer_kind, self.payer_id)

    @payer.setter
    def payer(self, ref: ParticipantRef) -> None:
        self.payer_kind = ref.kind
        self.payer_id = ref.id

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} "
            f"payer={self.payer}>"
        )
