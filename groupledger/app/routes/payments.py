"""
routes/payments.py — Payment route handlers.

Endpoints (url_prefix=/api/v1/groups):
  POST /groups/:id/payments → 201  record a payment
  GET  /groups/:id/payments → 200  list payments, newest first
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.models.payment import Payment
from groupledger.app.schemas.payment_schema import CreatePaymentSchema
from groupledger.app.services import payment_service
from groupledger.app.services.unit_of_work import unit_of_work

payments_bp = Blueprint("payments", __name__)


def _serialize_payment(payment: Payment) -> dict:
    return {
        "id":               payment.id,
        "group_id":         payment.group_id,
        "paid_by_user_id":  payment.paid_by_user_id,
        "paid_by_username": payment.payer.username,
        "paid_to_user_id":  payment.paid_to_user_id,
        "paid_to_username": payment.payee.username,
        "amount":           payment.amount,
        "payment_date":     payment.payment_date.isoformat(),
        "created_at":       payment.created_at.isoformat(),
    }


@payments_bp.route("/<int:group_id>/payments", methods=["POST"])
@require_auth
def create_payment(group_id: int):
    data = CreatePaymentSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        payment = payment_service.create_payment(
            group_id=group_id,
            caller_id=g.user_id,
            data=data,
            session=session,
        )
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 201


@payments_bp.route("/<int:group_id>/payments", methods=["GET"])
@require_auth
def list_payments(group_id: int):
    payments = payment_service.list_payments(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_payment(p) for p in payments],
        "warnings": [],
    }), 200
