"""
schemas/payment_schema.py — Marshmallow schema for payment endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount.
  - services/payment_service.py:
      - SELF_PAYMENT     (422) — payer == payee; the payer may come from the
                                 caller's identity, which schemas never see.
      - PAYER_NOT_MEMBER (422) / PAYEE_NOT_MEMBER (422) — DB lookups.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from groupledger.app.errors import ErrorCode


# Kept local rather than imported from expense_schema so each schema file
# stays self-contained.
def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, fits NUMERIC(12, 2), at most 2 decimal places (INVALID_AMOUNT_PRECISION)."""
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    if value > Decimal("9999999999.99"):
        raise ValidationError("Amount must not exceed 9999999999.99.")

    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


class CreatePaymentSchema(Schema):
    """
    POST /groups/:id/payments

    Field rules:
      paid_to_user_id : required, positive integer (the payee)
      paid_by_user_id : optional, defaults to the authenticated caller
      amount          : required, positive Decimal, max 2 dp
      payment_date    : optional ISO date, defaults to today
    """

    paid_to_user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="paid_to_user_id must be a positive integer."),
    )

    paid_by_user_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    amount = fields.Decimal(required=True, validate=_validate_monetary_amount)

    payment_date = fields.Date(load_default=None)
