"""
schemas/expense_schema.py — Marshmallow schemas for expense creation and listing.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - SPLITS_SENT_FOR_EQUAL_MODE  (400) — request shape rule
      - DUPLICATE_SPLIT_PARTICIPANT (400) — request shape rule
      - Splits required when split_mode='custom'
      - Non-empty-after-trim enforcement for title
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH (422)       — requires Decimal arithmetic
      - PARTICIPANT_NOT_IN_GROUP (422) — requires DB lookups

Participants are sent as (kind, id) pairs: "user" for a registered user,
"pending" for an invited phone-number contact. Kind defaults to "user".
On load they are turned into ParticipantRef objects under `payer` and
`splits[].participant`.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from splitcredit.app.errors import ErrorCode
from splitcredit.app.models.expense import Category, SplitMode
from splitcredit.app.models.participant import ParticipantKind, ParticipantRef


# ── Shared validators ─────────────────────────────────────────────────────

def _validate_precision(value: Decimal) -> None:
    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places. Never rounded."""
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    _validate_precision(value)


def _validate_share_amount(value: Decimal) -> None:
    """A split share may be zero but never negative."""
    if value < Decimal("0"):
        raise ValidationError("Split amounts must not be negative.")
    _validate_precision(value)


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _participant_kind_field(**kwargs) -> fields.Enum:
    return fields.Enum(
        ParticipantKind,
        load_default=ParticipantKind.USER,
        by_value=True,
        **kwargs,
    )


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """
    One split object within the `splits` array.

    Whether the participant belongs to the group is checked in
    expense_service.py, not here.
    """

    participant_kind = _participant_kind_field()

    participant_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="participant_id must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_share_amount,
    )

    @post_load
    def to_participant(self, data: dict, **kwargs) -> dict:
        return {
            "participant": ParticipantRef(data["participant_kind"], data["participant_id"]),
            "amount": data["amount"],
        }


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Split mode behaviour:
      - split_mode='equal'  → client must NOT send splits array.
                              Server splits across all current participants.
      - split_mode='custom' → client MUST send splits array.
                              The sum check is in expense_service.py.
    """

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=200,
                error="Title must be between 1 and 200 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    payer_kind = _participant_kind_field()

    payer_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="payer_id must be a positive integer."),
    )

    # INVALID_SPLIT_MODE (400) returned if value is not in the enum.
    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.CUSTOM,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    # INVALID_CATEGORY (400) returned if value is not in the enum.
    category = fields.Enum(
        Category,
        load_default=Category.OTHER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        """
        1. SPLITS_SENT_FOR_EQUAL_MODE: splits array sent with split_mode='equal'.
        2. splits required (and non-empty) when split_mode='custom'.
        3. DUPLICATE_SPLIT_PARTICIPANT: the same (kind, id) appears twice.
        """
        split_mode = data.get("split_mode", SplitMode.CUSTOM)
        splits = data.get("splits")

        if split_mode == SplitMode.EQUAL:
            if splits is not None:
                raise ValidationError(
                    {
                        "splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE],
                    }
                )
            return

        if not splits:
            raise ValidationError(
                {
                    "splits": [
                        "splits is required when split_mode is 'custom'."
                    ],
                }
            )

        participants = [s["participant"] for s in splits]
        if len(participants) != len(set(participants)):
            raise ValidationError(
                {
                    "splits": [ErrorCode.DUPLICATE_SPLIT_PARTICIPANT],
                }
            )

    @post_load
    def to_payer(self, data: dict, **kwargs) -> dict:
        data["payer"] = ParticipantRef(data.pop("payer_kind"), data.pop("payer_id"))
        return data


# ── List expenses ──────────────────────────────────────────────────────────

class ExpenseQuerySchema(Schema):
    """
    GET /groups/:id/expenses?category=&start_date=&end_date=&limit=

    Query strings, so not strict. Dates are inclusive calendar days in UTC.
    """

    category = fields.Enum(
        Category,
        load_default=None,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    start_date = fields.Date(load_default=None)
    end_date = fields.Date(load_default=None)

    limit = fields.Int(
        load_default=50,
        validate=validate.Range(min=1, max=200, error="limit must be between 1 and 200."),
    )

    @validates_schema
    def validate_date_range(self, data: dict, **kwargs) -> None:
        start, end = data.get("start_date"), data.get("end_date")
        if start is not None and end is not None and end < start:
            raise ValidationError({"end_date": ["end_date must not be before start_date."]})
