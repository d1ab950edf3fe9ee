"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Score-mutating handlers commit through run_in_transaction(), which retries
the service call on a concurrency conflict. The activity feed is written
after the commit and cannot fail the request.

Special: record_settlement returns (Settlement, credit_result, warnings[]).
  If warnings is non-empty (e.g. OVERPAYMENT), the route includes them in the
  response envelope: {"data": {...}, "warnings": [{"code": "OVERPAYMENT", ...}]}.
  The HTTP status is still 201 — overpayment does NOT block the request.

Endpoints (base url_prefix=/api/v1):
  POST   /groups/:id/settlements            → 201  record a payment and score it
  GET    /groups/:id/settlements            → 200  settlement history, newest first
  GET    /groups/:id/settlements/suggested  → 200  greedy settlement plan
  POST   /settlements/:id/complete          → 200  confirm a pending settlement
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from splitcredit.app.extensions import db
from splitcredit.app.middleware.auth_middleware import require_auth
from splitcredit.app.models.settlement import Settlement
from splitcredit.app.schemas.settlement_schema import CreateSettlementSchema
from splitcredit.app.services import activity_service, balance_service, settlement_service
from splitcredit.app.services.transactions import run_in_transaction

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_settlement(s: Settlement) -> dict:
    """Converts a Settlement ORM object to a plain dict for JSON output."""
    return {
        "id": s.id,
        "group_id": s.group_id,
        "from_user_id": s.from_participant_id,
        "to_user_id": s.to_participant_id,
        "amount": str(s.amount),  # Decimal → string, never a JS number
        "expense_id": s.expense_id,
        "method": s.method.value,
        "note": s.note,
        "status": s.status.value,
        "credit_score_processed": s.credit_score_processed,
        "last_penalty_tier": s.last_penalty_tier,
        "reminder_count": s.reminder_count,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "completed_at": s.completed_at.isoformat() if s.completed_at else None,
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["POST"])
@require_auth
def record_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a payment.

    The debtor is the authenticated caller (g.user_id), not from the body.
    A completed settlement scores the caller immediately; credit_score is
    null for a pending one.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})

    settlement, credit_result, warnings = run_in_transaction(
        db.session,
        lambda: settlement_service.record_settlement(
            group_id=group_id,
            caller_id=g.user_id,
            data=data,
            session=db.session,
        ),
        attempts=current_app.config["CONFLICT_RETRY_LIMIT"],
    )

    body = {
        "settlement": _serialize_settlement(settlement),
        "credit_score": credit_result.to_dict() if credit_result else None,
    }
    activity_service.log_settlement(db.session, g.user_id, settlement)
    return jsonify({"data": body, "warnings": warnings}), 201


@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["GET"])
@require_auth
def list_settlements(group_id: int):
    """GET /groups/:id/settlements — List all settlements for a group."""
    settlements = settlement_service.list_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200


@settlements_bp.route("/groups/<int:group_id>/settlements/suggested", methods=["GET"])
@require_auth
def suggested_settlements(group_id: int):
    """
    GET /groups/:id/settlements/suggested

    ready   — transfers between registered members
    pending — claims that wait for a pending member to register
    """
    result = balance_service.get_settlement_plan(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/settlements/<int:settlement_id>/complete", methods=["POST"])
@require_auth
def complete_settlement(settlement_id: int):
    """POST /settlements/:id/complete — Either party confirms a pending payment."""
    settlement, credit_result = run_in_transaction(
        db.session,
        lambda: settlement_service.complete_settlement(
            settlement_id=settlement_id,
            caller_id=g.user_id,
            session=db.session,
        ),
        attempts=current_app.config["CONFLICT_RETRY_LIMIT"],
    )

    body = {
        "settlement": _serialize_settlement(settlement),
        "credit_score": credit_result.to_dict(),
    }
    activity_service.log_settlement(db.session, g.user_id, settlement)
    return jsonify({"data": body, "warnings": []}), 200
