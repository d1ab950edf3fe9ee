"""
routes/credit.py — Credit score route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Every score mutation runs through run_in_transaction() so a concurrent
update to the same credit row is retried instead of lost.

Endpoints (base url_prefix=/api/v1/credit):
  GET  /credit/score             → 200  current score, streak and tier
  GET  /credit/history           → 200  score events, newest first (paged)
  POST /credit/reminder-ignored  → 200  apply the reminder_ignored penalty
  POST /credit/check-delays      → 200  escalate penalties on aged pending debts
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from splitcredit.app.extensions import db
from splitcredit.app.middleware.auth_middleware import require_auth
from splitcredit.app.schemas.credit_schema import (
    CreditHistoryQuerySchema,
    ReminderIgnoredSchema,
)
from splitcredit.app.services import credit_score_service
from splitcredit.app.services.transactions import run_in_transaction

credit_bp = Blueprint("credit", __name__)


@credit_bp.route("/score", methods=["GET"])
@require_auth
def get_score():
    """GET /credit/score — A user with no events yet reads as 700."""
    result = credit_score_service.get_credit_score(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@credit_bp.route("/history", methods=["GET"])
@require_auth
def get_history():
    """GET /credit/history?limit=20&skip=0"""
    page = CreditHistoryQuerySchema().load(request.args)
    result = credit_score_service.get_credit_history(
        g.user_id,
        db.session,
        limit=page["limit"],
        skip=page["skip"],
    )
    return jsonify({"data": result, "warnings": []}), 200


@credit_bp.route("/reminder-ignored", methods=["POST"])
@require_auth
def reminder_ignored():
    """
    POST /credit/reminder-ignored — body: {"settlement_id": 7}

    Not deduplicated: every ignored reminder costs -10.
    """
    data = ReminderIgnoredSchema().load(request.get_json(force=True) or {})

    result = run_in_transaction(
        db.session,
        lambda: credit_score_service.apply_reminder_ignored_penalty(
            g.user_id,
            data["settlement_id"],
            db.session,
        ),
        attempts=current_app.config["CONFLICT_RETRY_LIMIT"],
    )
    return jsonify({"data": result.to_dict(), "warnings": []}), 200


@credit_bp.route("/check-delays", methods=["POST"])
@require_auth
def check_delays():
    """
    POST /credit/check-delays — Scan the caller's pending debts.

    Safe to call repeatedly: a tier already charged for a settlement is
    never charged again.
    """
    penalties = run_in_transaction(
        db.session,
        lambda: credit_score_service.scan_pending_delays(g.user_id, db.session),
        attempts=current_app.config["CONFLICT_RETRY_LIMIT"],
    )
    return jsonify({
        "data": {"penalties": [p.to_dict() for p in penalties]},
        "warnings": [],
    }), 200
