"""
models/split.py — Split table definition.

One entry in an expense's split list: (participant, share amount).

Key design points:
  - `amount` uses Numeric(12, 2) and may be zero (a participant can be listed
    with no share), never negative.
  - The participant is polymorphic, stored as (participant_kind, participant_id).
  - UNIQUE(expense_id, participant_kind, participant_id): a participant
    appears at most once per expense.

sum(splits.amount) == expense.amount is enforced in expense_service.py.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from splitcredit.app.extensions import db
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef, enum_type


class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        UniqueConstraint(
            "expense_id",
            "participant_kind",
            "participant_id",
            name="uq_splits_expense_participant",
        ),
        CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
        Index("idx_splits_participant", "participant_kind", "participant_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    participant_kind: Mapped[ParticipantKind] = mapped_column(
        enum_type(ParticipantKind, "participant_kind_enum"),
        nullable=False,
    )
    participant_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    @property
    def participant(self) -> ParticipantRef:
        return ParticipantRef(self.participant_kind, self.participant_id)

    @participant.setter
    def participant(self, ref: ParticipantRef) -> None:
        self.participant_kind = ref.kind
        self.participant_id = ref.id

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"participant={self.participant} "
            f"amount={self.amount}>"
        )
