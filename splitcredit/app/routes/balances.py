"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances  → 200  active / pending / former balances + summary
  GET /groups/:id/activity  → 200  group activity feed, newest first
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitcredit.app.extensions import db
from splitcredit.app.middleware.auth_middleware import require_auth
from splitcredit.app.schemas.credit_schema import CreditHistoryQuerySchema
from splitcredit.app.services import activity_service, balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    The caller must be a group member; the service checks this before
    computing. The service also asserts that balances sum to exactly zero
    and raises INTERNAL_ERROR (500) if they do not.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/activity", methods=["GET"])
@require_auth
def get_activity(group_id: int):
    """GET /groups/:id/activity?limit=&skip= — same paging rules as credit history."""
    page = CreditHistoryQuerySchema().load(request.args)
    result = activity_service.list_group_activity(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        limit=page["limit"],
        skip=page["skip"],
    )
    return jsonify({"data": result, "warnings": []}), 200
