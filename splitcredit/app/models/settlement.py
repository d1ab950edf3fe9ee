"""
models/settlement.py — Settlement table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - from/to are polymorphic participant pairs like every balance-bearing
    reference. The service only records settlements between registered
    users; the kind columns keep the ledger arithmetic uniform.
  - `last_penalty_tier` ∈ {0, 3, 7, 15} and only ever increases for the life
    of the row. The delay scanner reads it to avoid penalising the same
    aging threshold twice.
  - A settlement stops aging once `status` is completed.
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


class SettlementStatus(str, enum.Enum):
    PENDING   = "pending"
    COMPLETED = "completed"


class SettlementMethod(str, enum.Enum):
    CASH  = "cash"
    UPI   = "upi"
    BANK  = "bank"
    OTHER = "other"


# Allowed values of Settlement.last_penalty_tier, lowest first.
PENALTY_TIERS = (0, 3, 7, 15)


class Settlement(db.Model):
    __tablename__ = "settlements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        CheckConstraint(
            "NOT (from_participant_kind = to_participant_kind "
            "AND from_participant_id = to_participant_id)",
            name="ck_settlements_no_self_settlement",
        ),
        CheckConstraint(
            "last_penalty_tier IN (0, 3, 7, 15)",
            name="ck_settlements_penalty_tier",
        ),
        CheckConstraint("reminder_count >= 0", name="ck_settlements_reminders"),
        Index("idx_settlements_group_created", "group_id", "created_at"),
        Index(
            "idx_settlements_debtor_status",
            "from_participant_kind",
            "from_participant_id",
            "status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Debtor (the participant paying).
    from_participant_kind: Mapped[ParticipantKind] = mapped_column(
        enum_type(ParticipantKind, "participant_kind_enum"),
        nullable=False,
    )
    from_participant_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Creditor (the participant being paid).
    to_participant_kind: Mapped[ParticipantKind] = mapped_column(
        enum_type(ParticipantKind, "participant_kind_enum"),
        nullable=False,
    )
    to_participant_id: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # Expense this payment is for, if any. Used to derive days_delayed.
    # SET NULL because expenses are hard-deleted.
    expense_id: Mapped[int | None] = mapped_column(
        ForeignKey("expenses.id", ondelete="SET NULL"),
        nullable=True,
    )

    method: Mapped[SettlementMethod] = mapped_column(
        enum_type(SettlementMethod, "settlement_method_enum"),
        nullable=False,
        default=SettlementMethod.CASH,
        server_default=SettlementMethod.CASH.value,
    )

    note: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
        default="",
        server_default="",
    )

    status: Mapped[SettlementStatus] = mapped_column(
        enum_type(SettlementStatus, "settlement_status_enum"),
        nullable=False,
        default=SettlementStatus.COMPLETED,
        server_default=SettlementStatus.COMPLETED.value,
    )

    credit_score_processed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    last_penalty_tier: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    reminder_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship("Group")  # noqa: F821

    # ── Participant accessors ──────────────────────────────────────────────

    @property
    def from_participant(self) -> ParticipantRef:
        return ParticipantRef(self.from_participant_kind, self.from_participant_id)

    @from_participant.setter
    def from_participant(self, ref: ParticipantRef) -> None:
        self.from_participant_kind = ref.kind
        self.from_participant_id = ref.id

    @property
    def to_participant(self) -> ParticipantRef:
        return ParticipantRef(self.to_participant_kind, self.to_participant_id)

    @to_participant.setter
    def to_participant(self, ref: ParticipantRef) -> None:
        self.to_participant_kind = ref.kind
        self.to_participant_id = ref.id

    @property
    def is_completed(self) -> bool:
        return self.status is SettlementStatus.COMPLETED

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Settlement id={self.id} "
            f"group_id={self.group_id} "
            f"from={self.from_participant} "
            f"to={self.to_participant} "
            f"amount={self.amount} "
            f"status={self.status.value}>"
        )
