"""
services/payment_service.py — Payment business logic.

A payment is a direct transfer from one member to another, recorded to
settle up. Payments are immutable once created.

Rules enforced here:
  FORBIDDEN (403)         — caller must be an active member of the group
  SELF_PAYMENT (422)      — payer and payee must differ
  PAYER_NOT_MEMBER (422)  — payer must be an active member
  PAYEE_NOT_MEMBER (422)  — payee must be an active member

The self-payment check lives here rather than in the schema because the
payer defaults to the caller's identity, which schemas never see. The DB
has a CHECK constraint as the last line of defence.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the unit of work's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.models.payment import Payment
from groupledger.app.services.group_service import (
    get_active_member_ids,
    get_group_or_404,
    require_active_member,
)

logger = logging.getLogger(__name__)


def list_group_payments(group_id: int, session: Session) -> list[Payment]:
    """Returns every payment of a group, oldest first. Payments have no soft-delete."""
    stmt = (
        select(Payment)
        .where(Payment.group_id == group_id)
        .order_by(Payment.payment_date.asc(), Payment.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def create_payment(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Payment:
    """
    Records a payment inside a group.

    Args:
        group_id:  The group this payment belongs to.
        caller_id: The authenticated user (from flask.g).
        data:      Validated dict from CreatePaymentSchema. paid_by_user_id
                   defaults to caller_id and payment_date to today.

    Returns:
        The new Payment ORM object.
    """
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)

    paid_by_user_id: int = data.get("paid_by_user_id") or caller_id
    paid_to_user_id: int = data["paid_to_user_id"]
    amount: Decimal = data["amount"]
    payment_date: date = data.get("payment_date") or date.today()

    if paid_by_user_id == paid_to_user_id:
        raise AppError(
            ErrorCode.SELF_PAYMENT,
            "A payment cannot be made to the payer themselves.",
            422,
            field="paid_to_user_id",
        )

    member_ids = get_active_member_ids(group_id, session)

    if paid_by_user_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by_user_id} is not a member of group {group_id}.",
            422,
            field="paid_by_user_id",
        )

    if paid_to_user_id not in member_ids:
        raise AppError(
            ErrorCode.PAYEE_NOT_MEMBER,
            f"User {paid_to_user_id} is not a member of group {group_id}.",
            422,
            field="paid_to_user_id",
        )

    payment = Payment(
        group_id=group_id,
        paid_by_user_id=paid_by_user_id,
        paid_to_user_id=paid_to_user_id,
        amount=amount,
        payment_date=payment_date,
    )
    session.add(payment)
    session.flush()

    logger.info(
        "Payment %s recorded in group %s: user %s paid user %s %s",
        payment.id, group_id, paid_by_user_id, paid_to_user_id, amount,
    )
    return payment


def list_payments(group_id: int, caller_id: int, session: Session) -> list[Payment]:
    """Returns the group's payments, newest first. Caller must be an active member."""
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)
    return list(reversed(list_group_payments(group_id, session)))
