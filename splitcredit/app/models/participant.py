"""
models/participant.py — Polymorphic participant reference.

A balance-bearing column pair (expense payer, split entry, settlement
from/to) always stores BOTH an id and a ParticipantKind:

    ParticipantKind.USER     id refers to users.id
    ParticipantKind.PENDING  id refers to pending_members.id

The pair is surfaced in Python as an immutable ParticipantRef, which is
hashable and therefore usable as a balance-map key. There is no table here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from sqlalchemy import Enum


class ParticipantKind(str, enum.Enum):
    USER    = "user"
    PENDING = "pending"


@dataclass(frozen=True)
class ParticipantRef:
    kind: ParticipantKind
    id: int

    @classmethod
    def user(cls, user_id: int) -> "ParticipantRef":
        return cls(ParticipantKind.USER, user_id)

    @classmethod
    def pending(cls, pending_member_id: int) -> "ParticipantRef":
        return cls(ParticipantKind.PENDING, pending_member_id)

    @property
    def is_pending(self) -> bool:
        return self.kind is ParticipantKind.PENDING

    def to_dict(self) -> dict:
        return {"participant_kind": self.kind.value, "participant_id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'pending'), not names ('PENDING')."""
    return [member.value for member in enum_cls]


def enum_type(enum_cls: type[enum.Enum], name: str) -> Enum:
    """
    Non-native enum column type (VARCHAR) shared by all models.

    Non-native keeps the same DDL on PostgreSQL and on the SQLite database
    used by the test suite. The CHECK constraints live in the migration,
    named per column; the ORM validates values on the way in.
    """
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=enum_values,
        validate_strings=True,
    )
