"""
routes/balances.py — Balance route handler.

Endpoint (url_prefix=/api/v1/groups):
  GET /groups/:id/balances → 200  net balance per active member + settled flag

Membership is checked and the ledger integrity asserted inside
balance_service.get_balance_response().
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
