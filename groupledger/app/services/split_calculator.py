"""
services/split_calculator.py — Turns an expense total and a split policy into
per-member owed amounts.

This file is the SINGLE SOURCE OF TRUTH for how an expense is divided.
Services call compute_splits(); nothing else in the codebase divides money.

Guarantee:
  sum(result amounts) == total_amount, exactly, for every policy.

Rounding:
  Each participant's ideal share is computed in cents as an exact rational
  number, floored to a whole cent, and the leftover cents are dealt one at a
  time in the order the participants were supplied. Identical inputs always
  produce identical output. Earlier-listed participants absorb the remainder.

Layer rules:
  - No Flask imports, no SQLAlchemy, no I/O. Plain data in, plain data out.
  - Validation errors are SplitPolicyError subclasses (400) and are raised
    before anything is computed, so callers never persist a partial result.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import ClassVar, Sequence, Union

from groupledger.app.errors import (
    AppError,
    DuplicateParticipant,
    EmptyParticipantSet,
    ErrorCode,
    InvalidWeight,
    UnknownParticipant,
    UnsupportedPolicy,
    WeightSumMismatch,
)


CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Percentages may drift from 100 by at most this much (e.g. 33.33 * 3).
PERCENTAGE_TOLERANCE = Decimal("0.01")


class SplitType(str, enum.Enum):
    """Stored as split_type_enum on expenses."""
    EQUAL      = "equal"
    EXACT      = "exact"
    PERCENTAGE = "percentage"
    SHARE      = "share"


# Which key of a split input carries the weight for each weighted policy.
WEIGHT_FIELDS: dict[SplitType, str] = {
    SplitType.EXACT:      "amount",
    SplitType.PERCENTAGE: "percentage",
    SplitType.SHARE:      "shares",
}


@dataclass(frozen=True)
class PolicyWeight:
    user_id: int
    value: Decimal


# ── Money helpers ──────────────────────────────────────────────────────────

def to_cents(amount: Decimal) -> int:
    """
    Converts a money Decimal to integer cents.

    Raises AppError(INVALID_AMOUNT_PRECISION, 400) for non-finite values or
    values with sub-cent precision; money is never silently rounded here.
    """
    if not amount.is_finite():
        raise AppError(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"Amount {amount} is not a finite number.",
            400,
            field="amount",
        )
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise AppError(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"Amount {amount} has more than 2 decimal places.",
            400,
            field="amount",
        )
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Integer cents back to a 2-dp Decimal: 334 → Decimal("3.34")."""
    return (Decimal(cents) / 100).quantize(CENT)


def _allocate(total_cents: int, ideals: Sequence[Fraction]) -> list[int]:
    """
    Floors every ideal share and deals the leftover cents in list order.

    For consistent inputs the leftover is in [0, len(ideals)), so at most
    N-1 leading participants get one extra cent. Percentages accepted within
    tolerance can leave a larger or negative leftover; it is still dealt one
    cent at a time, wrapping around, so the sum always lands on total_cents.

    A negative leftover is only taken from entries still above zero, so no
    participant ever owes a negative amount.
    """
    cents = [math.floor(ideal) for ideal in ideals]
    leftover = total_cents - sum(cents)
    step = 1 if leftover > 0 else -1

    index = 0
    while leftover != 0:
        position = index % len(cents)
        index += 1
        if step < 0 and cents[position] <= 0:
            continue
        cents[position] += step
        leftover -= step

    return cents


def _entry(user_id: int, cents: int, weight: Decimal | None) -> dict:
    return {"user_id": user_id, "amount": from_cents(cents), "weight": weight}


# ── Policies ───────────────────────────────────────────────────────────────
# One variant per split type. Each variant owns its validation and its
# computation; compute_splits() only orchestrates.

@dataclass(frozen=True)
class EqualPolicy:
    split_type: ClassVar[SplitType] = SplitType.EQUAL

    def validate(self, total_amount: Decimal, participant_ids: Sequence[int]) -> None:
        if not participant_ids:
            raise EmptyParticipantSet("There are no members to split the expense across.")

    def allocate(self, total_cents: int, participant_ids: Sequence[int]) -> list[dict]:
        n = len(participant_ids)
        cents = _allocate(total_cents, [Fraction(total_cents, n)] * n)
        return [_entry(uid, c, None) for uid, c in zip(participant_ids, cents)]


@dataclass(frozen=True)
class _WeightedPolicy:
    split_type: ClassVar[SplitType]

    weights: tuple[PolicyWeight, ...]

    @property
    def weight_field(self) -> str:
        return WEIGHT_FIELDS[self.split_type]

    def validate(self, total_amount: Decimal, participant_ids: Sequence[int]) -> None:
        if not participant_ids:
            raise EmptyParticipantSet("There are no members to split the expense across.")
        if not self.weights:
            raise EmptyParticipantSet(
                f"At least one split is required for split type '{self.split_type.value}'."
            )

        member_set = set(participant_ids)
        seen: set[int] = set()
        for weight in self.weights:
            if weight.user_id not in member_set:
                raise UnknownParticipant(
                    f"User {weight.user_id} in splits is not an active member of this group."
                )
            if weight.user_id in seen:
                raise DuplicateParticipant(
                    f"User {weight.user_id} appears more than once in splits."
                )
            seen.add(weight.user_id)

            if not weight.value.is_finite() or weight.value <= 0:
                raise InvalidWeight(
                    f"Invalid {self.weight_field} {weight.value} for user {weight.user_id}; "
                    f"it must be greater than zero."
                )
            self._validate_value(weight)

        self._validate_total(total_amount)

    def _validate_value(self, weight: PolicyWeight) -> None:
        pass

    def _validate_total(self, total_amount: Decimal) -> None:
        raise NotImplementedError

    def _ideal_cents(self, total_cents: int) -> list[Fraction]:
        raise NotImplementedError

    def allocate(self, total_cents: int, participant_ids: Sequence[int]) -> list[dict]:
        cents = _allocate(total_cents, self._ideal_cents(total_cents))
        return [
            _entry(weight.user_id, c, weight.value)
            for weight, c in zip(self.weights, cents)
        ]


@dataclass(frozen=True)
class ExactPolicy(_WeightedPolicy):
    split_type: ClassVar[SplitType] = SplitType.EXACT

    def _validate_value(self, weight: PolicyWeight) -> None:
        if weight.value != weight.value.quantize(CENT):
            raise InvalidWeight(
                f"Amount {weight.value} for user {weight.user_id} has more than 2 decimal places."
            )

    def _validate_total(self, total_amount: Decimal) -> None:
        weight_sum = sum((w.value for w in self.weights), Decimal("0"))
        # Exact means exact: no tolerance, no auto-adjusting.
        if weight_sum != total_amount:
            raise WeightSumMismatch(
                f"Sum of exact split amounts ({weight_sum.quantize(CENT)}) does not equal "
                f"the expense amount ({total_amount.quantize(CENT)})."
            )

    def _ideal_cents(self, total_cents: int) -> list[Fraction]:
        return [Fraction(to_cents(w.value)) for w in self.weights]


@dataclass(frozen=True)
class PercentagePolicy(_WeightedPolicy):
    split_type: ClassVar[SplitType] = SplitType.PERCENTAGE

    def _validate_value(self, weight: PolicyWeight) -> None:
        if weight.value > HUNDRED:
            raise InvalidWeight(
                f"Percentage {weight.value} for user {weight.user_id} exceeds 100."
            )

    def _validate_total(self, total_amount: Decimal) -> None:
        total_percentage = sum((w.value for w in self.weights), Decimal("0"))
        if abs(total_percentage - HUNDRED) > PERCENTAGE_TOLERANCE:
            raise WeightSumMismatch(
                f"Percentages must sum to 100 (currently {total_percentage})."
            )

    def _ideal_cents(self, total_cents: int) -> list[Fraction]:
        return [Fraction(total_cents) * Fraction(w.value) / 100 for w in self.weights]


@dataclass(frozen=True)
class SharePolicy(_WeightedPolicy):
    split_type: ClassVar[SplitType] = SplitType.SHARE

    def _validate_total(self, total_amount: Decimal) -> None:
        total_shares = sum((w.value for w in self.weights), Decimal("0"))
        if total_shares <= 0:
            raise WeightSumMismatch("Total shares must be greater than zero.")

    def _ideal_cents(self, total_cents: int) -> list[Fraction]:
        total_shares = sum((Fraction(w.value) for w in self.weights), Fraction(0))
        return [Fraction(total_cents) * Fraction(w.value) / total_shares for w in self.weights]


SplitPolicy = Union[EqualPolicy, ExactPolicy, PercentagePolicy, SharePolicy]

_POLICY_CLASSES: dict[SplitType, type] = {
    SplitType.EQUAL:      EqualPolicy,
    SplitType.EXACT:      ExactPolicy,
    SplitType.PERCENTAGE: PercentagePolicy,
    SplitType.SHARE:      SharePolicy,
}


# ── Public API ─────────────────────────────────────────────────────────────

def parse_split_type(value) -> SplitType:
    """Returns the SplitType for `value` or raises UnsupportedPolicy (400)."""
    try:
        return SplitType(value)
    except ValueError:
        raise UnsupportedPolicy(f"Split type {value!r} is not supported.") from None


def _to_decimal(value, user_id: int, field: str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidWeight(f"Invalid {field} {value!r} for user {user_id}.") from None


def build_policy(split_type, raw_splits: Sequence[dict] | None = None) -> SplitPolicy:
    """
    Builds a SplitPolicy from a split type tag and the request's split inputs.

    Args:
        split_type: A SplitType or its string value ("equal", "exact", ...).
        raw_splits: [{"user_id": int, <weight field>: number}, ...] in the
                    order the client sent them. Ignored for equal splits.
                    The weight field is "amount", "percentage" or "shares".

    Raises:
        UnsupportedPolicy — split_type is not recognised.
        InvalidWeight     — an entry lacks the weight field its policy needs.
    """
    split_type = parse_split_type(split_type)
    if split_type is SplitType.EQUAL:
        return EqualPolicy()

    field = WEIGHT_FIELDS[split_type]
    weights = []
    for raw in raw_splits or []:
        user_id = raw["user_id"]
        value = raw.get(field)
        if value is None:
            raise InvalidWeight(
                f"Split for user {user_id} is missing '{field}', which is required "
                f"for split type '{split_type.value}'."
            )
        weights.append(PolicyWeight(user_id, _to_decimal(value, user_id, field)))

    return _POLICY_CLASSES[split_type](tuple(weights))


def compute_splits(
        total_amount: Decimal,
        policy: SplitPolicy,
        participant_ids: Sequence[int],
) -> list[dict]:
    """
    Divides total_amount according to policy.

    Args:
        total_amount:    Expense total, Decimal with at most 2 dp.
        policy:          One of EqualPolicy / ExactPolicy / PercentagePolicy / SharePolicy.
        participant_ids: Active members of the group, in the order remainder
                         cents should be handed out for an equal split.
                         Weighted policies must only reference these users.

    Returns:
        [{"user_id": int, "amount": Decimal, "weight": Decimal | None}, ...]
        Equal splits follow participant_ids order; weighted splits follow
        the order of the policy's weights.

    Raises:
        SplitPolicyError subclasses (400) for invalid input.
        AppError(INTERNAL_ERROR, 500) if the sum guarantee is ever broken.
    """
    if not isinstance(policy, tuple(_POLICY_CLASSES.values())):
        raise UnsupportedPolicy(f"Split policy {policy!r} is not supported.")

    total_cents = to_cents(total_amount)
    policy.validate(total_amount, participant_ids)
    splits = policy.allocate(total_cents, participant_ids)

    # Must always hold; a failure here is a programming error.
    computed_sum = sum((s["amount"] for s in splits), Decimal("0"))
    if computed_sum != total_amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"{policy.split_type.value} split produced sum {computed_sum} for amount "
            f"{total_amount}. This is a bug — please report it.",
            500,
        )

    return splits
