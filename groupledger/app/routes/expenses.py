"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped paths (/groups/:id/expenses) and the
expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service inside a unit of work, return envelope.
  - No business logic. No DB queries.

Endpoints:
  POST   /groups/:id/expenses                      → 201  create expense
  GET    /groups/:id/expenses[?include_deleted=1]  → 200  list expenses
  GET    /expenses/:id                             → 200  get expense + splits
  PATCH  /expenses/:id                             → 200  partial update
  DELETE /expenses/:id                             → 200  soft-delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.models.expense import Expense
from groupledger.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from groupledger.app.services import expense_service
from groupledger.app.services.unit_of_work import unit_of_work

expenses_bp = Blueprint("expenses", __name__)

_TRUTHY = {"1", "true", "yes"}


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict. Decimals render as strings."""
    return {
        "id":               expense.id,
        "group_id":         expense.group_id,
        "paid_by_user_id":  expense.paid_by_user_id,
        "paid_by_username": expense.payer.username,
        "description":      expense.description,
        "amount":           expense.amount,
        "split_type":       expense.split_type.value,
        "transaction_date": expense.transaction_date.isoformat(),
        "created_at":       expense.created_at.isoformat(),
        "updated_at":       expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at":       expense.deleted_at.isoformat() if expense.deleted_at else None,
        "splits": [
            {
                "user_id":  s.user_id,
                "username": s.user.username,
                "amount":   s.amount,
                "weight":   s.weight,
            }
            for s in expense.splits
        ],
    }


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record a new expense and compute its splits."""
    data = CreateExpenseSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        expense = expense_service.create_expense(
            group_id=group_id,
            caller_id=g.user_id,
            data=data,
            session=session,
        )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — Active expenses; ?include_deleted=true adds deleted ones."""
    include_deleted = request.args.get("include_deleted", "").lower() in _TRUTHY
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        include_deleted=include_deleted,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def edit_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    Changing amount, split_type or splits recomputes every split.
    """
    data = PatchExpenseSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        expense = expense_service.edit_expense(
            expense_id=expense_id,
            caller_id=g.user_id,
            data=data,
            session=session,
        )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Soft-delete. The balance engine skips it from now on."""
    with unit_of_work(db.session) as session:
        expense_service.delete_expense(
            expense_id=expense_id,
            caller_id=g.user_id,
            session=session,
        )
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
