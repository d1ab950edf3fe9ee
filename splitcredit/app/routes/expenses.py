"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1):
  POST   /groups/:id/expenses  → 201  record an expense
  GET    /groups/:id/expenses  → 200  expense history, newest first
  GET    /expenses/:id         → 200  one expense with its splits
  DELETE /expenses/:id         → 200  hard-delete an expense (payer or owner)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from splitcredit.app.extensions import db
from splitcredit.app.middleware.auth_middleware import require_auth
from splitcredit.app.models.expense import Expense
from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.schemas.expense_schema import CreateExpenseSchema, ExpenseQuerySchema
from splitcredit.app.services import activity_service, expense_service

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_expense(e: Expense, names: dict[ParticipantRef, str] | None = None) -> dict:
    """
    Converts an Expense ORM object (with splits) to a plain dict.
    With `names`, the payer and each split also carry a display name.
    """
    body = {
        "id": e.id,
        "group_id": e.group_id,
        "title": e.title,
        "amount": str(e.amount),
        "payer_kind": e.payer_kind.value,
        "payer_id": e.payer_id,
        "split_mode": e.split_mode.value,
        "category": e.category.value,
        "has_pending_participants": e.has_pending_participants,
        "created_by_user_id": e.created_by_user_id,
        "created_at": e.created_at.isoformat() if e.created_at else None,
        "splits": [
            {**s.participant.to_dict(), "amount": str(s.amount)}
            for s in e.splits
        ],
    }
    if names is not None:
        body["payer_name"] = names[e.payer]
        for entry, split in zip(body["splits"], e.splits):
            entry["name"] = names[split.participant]
    return body


# ── Group-scoped routes ────────────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record a new expense."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()

    body = _serialize_expense(expense)
    activity_service.log_expense_added(db.session, g.user_id, expense)
    return jsonify({"data": body, "warnings": []}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses?category=&start_date=&end_date=&limit="""
    query = ExpenseQuerySchema().load(request.args)
    expenses, names = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        **query,
    )
    return jsonify({
        "data": [_serialize_expense(e, names) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    """GET /expenses/:id — Expense detail including splits."""
    expense, names = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense, names), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Hard delete. Splits are removed with it."""
    deleted = expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()

    activity_service.log_expense_deleted(db.session, g.user_id, deleted)
    return jsonify({"data": {"id": deleted["id"], "deleted": True}, "warnings": []}), 200
