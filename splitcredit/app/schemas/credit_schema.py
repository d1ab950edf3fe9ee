"""
schemas/credit_schema.py — Marshmallow schemas for credit endpoints.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class ReminderIgnoredSchema(Schema):
    """
    POST /credit/reminder-ignored

    The penalised user is the caller. Whether they are the debtor on this
    settlement is checked in credit_score_service.py.
    """

    settlement_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="settlement_id must be a positive integer."),
    )


class CreditHistoryQuerySchema(Schema):
    """GET /credit/history?limit=&skip= — query strings, so not strict."""

    limit = fields.Int(
        load_default=20,
        validate=validate.Range(min=1, max=100, error="limit must be between 1 and 100."),
    )

    skip = fields.Int(
        load_default=0,
        validate=validate.Range(min=0, error="skip must not be negative."),
    )
