"""
schemas/settlement_schema.py — Marshmallow schema for settlement endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount, enum values,
    non-negative days_delayed, note length.
  - services/settlement_service.py:
      - SELF_SETTLEMENT (422)       — needs the caller's id from flask.g;
                                      the service receives it as argument.
      - OVERPAYMENT warning (201)   — needs the current balances.
      - RECIPIENT_NOT_MEMBER (422)  — needs a DB membership lookup.
      - EXPENSE_NOT_IN_GROUP (422)  — needs a DB lookup.
      - GROUP_NOT_FOUND (404)       — needs a DB lookup.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from splitcredit.app.errors import ErrorCode
from splitcredit.app.models.settlement import SettlementMethod, SettlementStatus


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Identical logic to the validator in expense_schema.py. Defined here
# rather than imported from expense_schema to keep each schema file
# self-contained.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must have at most 2 decimal places.

    Input with more than 2 decimal places is REJECTED (INVALID_AMOUNT_PRECISION)
    — never rounded. This matches the DB column type NUMERIC(12, 2).
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


# ── Schema ─────────────────────────────────────────────────────────────────

class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements

    Records a payment from the authenticated user (the debtor, taken from
    flask.g.user_id in the route — not from the request body) to another
    group member.

    Field rules:
      to_user_id   : required, positive integer
      amount       : required, positive Decimal, max 2 decimal places
      days_delayed : optional, integer >= 0, default 0. Ignored when
                     expense_id is given (the expense's age is used).
      expense_id   : optional, positive integer
      status       : optional, 'completed' (default) or 'pending'
      method       : optional, cash | upi | bank | other (default cash)
      note         : optional, at most 300 characters
    """

    to_user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0 — integers only
        validate=validate.Range(
            min=1,
            error="to_user_id must be a positive integer.",
        ),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    days_delayed = fields.Int(
        load_default=0,
        strict=True,
        validate=validate.Range(min=0, error="days_delayed must not be negative."),
    )

    expense_id = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(min=1, error="expense_id must be a positive integer."),
    )

    status = fields.Enum(
        SettlementStatus,
        load_default=SettlementStatus.COMPLETED,
        by_value=True,
    )

    method = fields.Enum(
        SettlementMethod,
        load_default=SettlementMethod.CASH,
        by_value=True,
    )

    note = fields.Str(
        load_default="",
        validate=validate.Length(max=300, error="note must be at most 300 characters."),
    )
