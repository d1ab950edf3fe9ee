"""
routes/reconciliation.py — Pending-member reconciliation handlers.

A pending member is a phone-number contact added to groups before they
registered. When they sign up with that phone number, the claim endpoint
moves their group places and expense history onto the new account.

Layer rules:
  - Call ONE service, return envelope.
  - reconciliation_service commits (or rolls back) by itself; the route
    never commits for it.

Endpoints (base url_prefix=/api/v1/reconciliation):
  GET  /reconciliation/pending  → 200  what a claim would bring over (data null if none)
  POST /reconciliation/claim    → 200  reconcile the caller's phone number
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from splitcredit.app.extensions import db
from splitcredit.app.middleware.auth_middleware import require_auth
from splitcredit.app.services import activity_service, reconciliation_service

reconciliation_bp = Blueprint("reconciliation", __name__)


@reconciliation_bp.route("/pending", methods=["GET"])
@require_auth
def preview_pending():
    """GET /reconciliation/pending — Read-only preview."""
    result = reconciliation_service.preview_pending_history(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@reconciliation_bp.route("/claim", methods=["POST"])
@require_auth
def claim_pending():
    """
    POST /reconciliation/claim

    All-or-nothing. On failure nothing is moved and the response is
    RECONCILIATION_FAILED (500); the caller may retry.
    """
    result = reconciliation_service.claim_pending_history(g.user_id, db.session)

    if result["reconciled"]:
        activity_service.log_member_joined(db.session, g.user_id, result["group_ids"])
    return jsonify({"data": result, "warnings": []}), 200
