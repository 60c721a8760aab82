"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file: request shape. Field types, lengths, split type tag,
    monetary precision, and the splits/split_type coherence rules that
    need nothing but the request body:
      - SPLITS_SENT_FOR_EQUAL_SPLIT (400)
      - SPLITS_REQUIRED             (400) on create
  - services/split_calculator.py: everything about the weights themselves
    (membership, duplicates, positivity, sums). Those errors carry the
    split-policy codes and are raised before any write.
  - services/expense_service.py: anything that needs the database
    (payer membership, stored split type on edit, deleted expense,
    edit permission).

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from groupledger.app.errors import ErrorCode
from groupledger.app.services.split_calculator import SplitType


_SPLIT_TYPE_VALUES = [split_type.value for split_type in SplitType]

# Largest values the NUMERIC(12, 2) money and NUMERIC(14, 4) weight columns hold.
MAX_AMOUNT = Decimal("9999999999.99")
MAX_WEIGHT = Decimal("9999999999.9999")


def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most 2 decimal places, and small enough to store.

    More than 2 dp is REJECTED with INVALID_AMOUNT_PRECISION, never rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    if value > MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {MAX_AMOUNT}.")

    # Decimal("10.123").as_tuple().exponent == -3  → 3 dp → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_weight(value: Decimal) -> None:
    """Weights are stored as NUMERIC(14, 4); finer or larger inputs would not survive a recompute."""
    if value.as_tuple().exponent < -4 or value > MAX_WEIGHT:
        raise ValidationError(ErrorCode.INVALID_WEIGHT)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_description_validators = [
    validate.Length(
        min=1,
        max=255,
        error="Description must be between 1 and 255 characters.",
    ),
    _validate_non_empty_after_trim,
]


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """
    One participant's weight. Which weight field is read depends on the
    expense's split type:

        exact      → amount
        percentage → percentage
        share      → shares

    Positivity, membership and sum rules are the split calculator's job.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    amount     = fields.Decimal(load_default=None)
    percentage = fields.Decimal(load_default=None, validate=_validate_weight)
    shares     = fields.Decimal(load_default=None, validate=_validate_weight)


def _split_type_field(**kwargs) -> fields.Str:
    return fields.Str(
        validate=validate.OneOf(_SPLIT_TYPE_VALUES, error=ErrorCode.UNSUPPORTED_POLICY),
        error_messages={"invalid": ErrorCode.INVALID_SPLIT_TYPE},
        **kwargs,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    paid_by_user_id defaults to the caller when omitted.
    transaction_date defaults to today when omitted.

    Split type behaviour:
      - equal    → client must NOT send splits; every active member shares.
      - exact / percentage / share → client MUST send splits.
    """

    paid_by_user_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(required=True, validate=_description_validators)

    amount = fields.Decimal(required=True, validate=_validate_monetary_amount)

    split_type = _split_type_field(load_default=SplitType.EQUAL.value)

    transaction_date = fields.Date(load_default=None)

    splits = fields.List(fields.Nested(SplitInputSchema), load_default=None)

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        split_type = data.get("split_type", SplitType.EQUAL.value)
        splits = data.get("splits")

        if split_type == SplitType.EQUAL:
            if splits is not None:
                raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_SPLIT]})
        elif splits is None:
            raise ValidationError({"splits": [ErrorCode.SPLITS_REQUIRED]})


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    All fields are optional; only provided fields change.

    Shape rule enforced here:
      - splits together with split_type 'equal' → SPLITS_SENT_FOR_EQUAL_SPLIT.

    Rules that need the stored expense live in expense_service.py:
      - switching to a weighted split type without splits → SPLITS_REQUIRED
      - sending splits for an expense that is already equal → SPLITS_SENT_FOR_EQUAL_SPLIT
      - amount-only edits recompute from the stored weights
    """

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(validate=_description_validators)

    amount = fields.Decimal(validate=_validate_monetary_amount)

    split_type = _split_type_field()

    transaction_date = fields.Date()

    splits = fields.List(fields.Nested(SplitInputSchema))

    @validates_schema
    def validate_patch_coherence(self, data: dict, **kwargs) -> None:
        if data.get("split_type") == SplitType.EQUAL and data.get("splits") is not None:
            raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_SPLIT]})
