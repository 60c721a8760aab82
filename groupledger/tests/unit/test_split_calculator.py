"""
tests/unit/test_split_calculator.py — Unit tests for services/split_calculator.py.

What this file proves:
  - sum(result amounts) == total exactly, for every policy
  - Remainder cents go to the earliest-listed participants, one each
  - The worked examples for equal, percentage, share and exact splits hold
  - Every invalid input raises its specific SplitPolicyError before any
    computation, and all of them map to HTTP 400
  - Identical inputs always give identical output

Constraints:
  - No database, no Flask, no mocks of the engine's own arithmetic.
  - All money is Decimal. No float anywhere.
"""

from __future__ import annotations

from decimal import Decimal
from fractions import Fraction

import pytest

from groupledger.app.errors import (
    AppError,
    DuplicateParticipant,
    EmptyParticipantSet,
    ErrorCode,
    InvalidWeight,
    SplitPolicyError,
    UnknownParticipant,
    UnsupportedPolicy,
    WeightSumMismatch,
)
from groupledger.app.services import split_calculator
from groupledger.app.services.split_calculator import (
    EqualPolicy,
    ExactPolicy,
    PercentagePolicy,
    PolicyWeight,
    SharePolicy,
    SplitType,
    build_policy,
    compute_splits,
    from_cents,
    to_cents,
)

A, B, C = 1, 2, 3


def _weights(*pairs) -> tuple[PolicyWeight, ...]:
    return tuple(PolicyWeight(user_id, Decimal(value)) for user_id, value in pairs)


def _amounts(splits: list[dict]) -> dict[int, Decimal]:
    return {s["user_id"]: s["amount"] for s in splits}


def _assert_sum(splits: list[dict], total: Decimal) -> None:
    computed = sum(s["amount"] for s in splits)
    assert computed == total, f"split sum {computed} != total {total}"


# ── Money helpers ──────────────────────────────────────────────────────────

def test_to_cents_and_back():
    assert to_cents(Decimal("10.50")) == 1050
    assert to_cents(Decimal("7")) == 700
    assert from_cents(334) == Decimal("3.34")
    assert str(from_cents(300)) == "3.00"


def test_to_cents_rejects_sub_cent_amounts():
    with pytest.raises(AppError) as exc_info:
        to_cents(Decimal("10.001"))

    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT_PRECISION
    assert exc_info.value.http_status == 400


# ── Equal ──────────────────────────────────────────────────────────────────

def test_equal_split_gives_remainder_cent_to_first_participant():
    total = Decimal("10.00")
    result = compute_splits(total, EqualPolicy(), [A, B, C])

    assert [s["user_id"] for s in result] == [A, B, C]
    assert _amounts(result) == {
        A: Decimal("3.34"),
        B: Decimal("3.33"),
        C: Decimal("3.33"),
    }
    assert all(s["weight"] is None for s in result)
    _assert_sum(result, total)


def test_equal_split_remainder_follows_participant_order():
    result = compute_splits(Decimal("10.00"), EqualPolicy(), [C, A, B])

    assert result[0] == {"user_id": C, "amount": Decimal("3.34"), "weight": None}


def test_equal_split_two_cent_remainder_spreads_over_first_two():
    result = compute_splits(Decimal("0.02"), EqualPolicy(), [A, B, C])

    assert _amounts(result) == {
        A: Decimal("0.01"),
        B: Decimal("0.01"),
        C: Decimal("0.00"),
    }


def test_equal_split_single_participant_takes_everything():
    result = compute_splits(Decimal("42.17"), EqualPolicy(), [A])

    assert _amounts(result) == {A: Decimal("42.17")}


@pytest.mark.parametrize("total", ["0.01", "1.00", "99.99", "100.00", "1234.57"])
@pytest.mark.parametrize("n", [1, 2, 3, 7])
def test_equal_split_sum_is_exact(total, n):
    total = Decimal(total)
    result = compute_splits(total, EqualPolicy(), list(range(1, n + 1)))

    _assert_sum(result, total)
    amounts = [s["amount"] for s in result]
    assert max(amounts) - min(amounts) <= Decimal("0.01")


def test_equal_split_rejects_empty_participant_set():
    with pytest.raises(EmptyParticipantSet) as exc_info:
        compute_splits(Decimal("10.00"), EqualPolicy(), [])

    assert exc_info.value.code == ErrorCode.EMPTY_PARTICIPANT_SET
    assert exc_info.value.http_status == 400


# ── Percentage ─────────────────────────────────────────────────────────────

def test_percentage_split_worked_example():
    policy = PercentagePolicy(_weights((A, "30"), (B, "50"), (C, "20")))
    result = compute_splits(Decimal("100.00"), policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("30.00"),
        B: Decimal("50.00"),
        C: Decimal("20.00"),
    }
    assert [s["weight"] for s in result] == [Decimal("30"), Decimal("50"), Decimal("20")]


def test_percentage_split_rejects_sum_over_tolerance():
    policy = PercentagePolicy(_weights((A, "30"), (B, "50"), (C, "21")))

    with pytest.raises(WeightSumMismatch):
        compute_splits(Decimal("100.00"), policy, [A, B, C])


def test_percentage_split_accepts_sum_within_tolerance_and_keeps_total():
    policy = PercentagePolicy(_weights((A, "33.33"), (B, "33.33"), (C, "33.33")))
    total = Decimal("100.00")
    result = compute_splits(total, policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("33.34"),
        B: Decimal("33.33"),
        C: Decimal("33.33"),
    }
    _assert_sum(result, total)


def test_percentage_split_over_100_within_tolerance_takes_cent_back_from_first():
    policy = PercentagePolicy(_weights((A, "33.34"), (B, "33.34"), (C, "33.33")))
    total = Decimal("100.00")
    result = compute_splits(total, policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("33.33"),
        B: Decimal("33.34"),
        C: Decimal("33.33"),
    }
    _assert_sum(result, total)


def test_percentage_split_over_100_never_takes_a_share_below_zero():
    policy = PercentagePolicy(_weights((A, "0.0001"), (B, "50.0050"), (C, "50.0049")))
    total = Decimal("10000.00")
    result = compute_splits(total, policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("0.00"),
        B: Decimal("5000.00"),
        C: Decimal("5000.00"),
    }
    assert all(s["amount"] >= 0 for s in result)
    _assert_sum(result, total)


def test_allocate_skips_exhausted_entries_when_taking_cents_back():
    ideals = [Fraction(1), Fraction(0), Fraction(6)]

    assert split_calculator._allocate(4, ideals) == [0, 0, 4]


def test_percentage_split_remainder_follows_weight_order():
    policy = PercentagePolicy(_weights((B, "50"), (A, "50")))
    result = compute_splits(Decimal("0.05"), policy, [A, B])

    assert result[0] == {"user_id": B, "amount": Decimal("0.03"), "weight": Decimal("50")}
    assert result[1]["amount"] == Decimal("0.02")


@pytest.mark.parametrize("value", ["0", "-10", "100.5"])
def test_percentage_split_rejects_out_of_range_percentages(value):
    policy = PercentagePolicy(_weights((A, value), (B, "50")))

    with pytest.raises(InvalidWeight):
        compute_splits(Decimal("10.00"), policy, [A, B])


# ── Share ──────────────────────────────────────────────────────────────────

def test_share_split_worked_example():
    policy = SharePolicy(_weights((A, "1"), (B, "2"), (C, "3")))
    result = compute_splits(Decimal("60.00"), policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("10.00"),
        B: Decimal("20.00"),
        C: Decimal("30.00"),
    }


def test_share_split_fractional_shares():
    policy = SharePolicy(_weights((A, "1.5"), (B, "0.5")))
    result = compute_splits(Decimal("10.00"), policy, [A, B])

    assert _amounts(result) == {A: Decimal("7.50"), B: Decimal("2.50")}


def test_share_split_remainder_goes_to_first_weight():
    policy = SharePolicy(_weights((A, "1"), (B, "1"), (C, "1")))
    total = Decimal("10.00")
    result = compute_splits(total, policy, [A, B, C])

    assert [s["amount"] for s in result] == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
    _assert_sum(result, total)


def test_share_split_all_zero_shares_is_invalid_not_equal():
    policy = SharePolicy(_weights((A, "0"), (B, "0")))

    with pytest.raises(InvalidWeight) as exc_info:
        compute_splits(Decimal("10.00"), policy, [A, B])

    assert exc_info.value.code == ErrorCode.INVALID_WEIGHT


def test_share_split_with_subset_of_members():
    policy = SharePolicy(_weights((A, "1"), (C, "1")))
    result = compute_splits(Decimal("9.99"), policy, [A, B, C])

    assert _amounts(result) == {A: Decimal("5.00"), C: Decimal("4.99")}


# ── Exact ──────────────────────────────────────────────────────────────────

def test_exact_split_returns_amounts_unchanged():
    policy = ExactPolicy(_weights((A, "10.25"), (B, "20.00"), (C, "25.25")))
    result = compute_splits(Decimal("55.50"), policy, [A, B, C])

    assert _amounts(result) == {
        A: Decimal("10.25"),
        B: Decimal("20.00"),
        C: Decimal("25.25"),
    }


def test_exact_split_rejects_sum_mismatch():
    policy = ExactPolicy(_weights((A, "10.25"), (B, "20.00"), (C, "24.75")))

    with pytest.raises(WeightSumMismatch) as exc_info:
        compute_splits(Decimal("55.50"), policy, [A, B, C])

    assert exc_info.value.field == "splits"


def test_exact_split_rejects_sub_cent_amount():
    policy = ExactPolicy(_weights((A, "5.005"), (B, "4.995")))

    with pytest.raises(InvalidWeight):
        compute_splits(Decimal("10.00"), policy, [A, B])


# ── Shared weighted-policy validation ──────────────────────────────────────

def test_weighted_split_rejects_unknown_participant():
    policy = ExactPolicy(_weights((A, "5.00"), (99, "5.00")))

    with pytest.raises(UnknownParticipant) as exc_info:
        compute_splits(Decimal("10.00"), policy, [A, B])

    assert exc_info.value.code == ErrorCode.UNKNOWN_PARTICIPANT


def test_weighted_split_rejects_duplicate_participant():
    policy = SharePolicy(_weights((A, "1"), (A, "2")))

    with pytest.raises(DuplicateParticipant):
        compute_splits(Decimal("10.00"), policy, [A, B])


def test_weighted_split_rejects_empty_weights():
    with pytest.raises(EmptyParticipantSet):
        compute_splits(Decimal("10.00"), PercentagePolicy(()), [A, B])


def test_every_policy_error_is_a_400():
    for error_cls in (
        EmptyParticipantSet,
        WeightSumMismatch,
        UnknownParticipant,
        DuplicateParticipant,
        InvalidWeight,
        UnsupportedPolicy,
    ):
        err = error_cls("boom")
        assert isinstance(err, SplitPolicyError)
        assert err.http_status == 400


# ── build_policy ───────────────────────────────────────────────────────────

def test_build_policy_maps_weight_field_per_type():
    raw = [{"user_id": A, "amount": None, "percentage": Decimal("60"), "shares": None},
           {"user_id": B, "percentage": Decimal("40")}]

    policy = build_policy("percentage", raw)

    assert isinstance(policy, PercentagePolicy)
    assert policy.weights == _weights((A, "60"), (B, "40"))


def test_build_policy_equal_ignores_weights():
    assert build_policy(SplitType.EQUAL, None) == EqualPolicy()


def test_build_policy_missing_weight_field_is_invalid_weight():
    with pytest.raises(InvalidWeight):
        build_policy("share", [{"user_id": A, "amount": Decimal("5.00")}])


def test_build_policy_rejects_unknown_split_type():
    with pytest.raises(UnsupportedPolicy) as exc_info:
        build_policy("by-mood", [])

    assert exc_info.value.field == "split_type"


def test_compute_splits_rejects_unknown_policy_object():
    with pytest.raises(UnsupportedPolicy):
        compute_splits(Decimal("10.00"), object(), [A])


# ── Determinism and postcondition ──────────────────────────────────────────

def test_same_inputs_give_same_output():
    policy = SharePolicy(_weights((A, "1"), (B, "1"), (C, "1")))

    first = compute_splits(Decimal("100.00"), policy, [A, B, C])
    second = compute_splits(Decimal("100.00"), policy, [A, B, C])

    assert first == second


def test_broken_allocation_raises_internal_error(monkeypatch):
    monkeypatch.setattr(split_calculator, "_allocate", lambda total, ideals: [0] * len(ideals))

    with pytest.raises(AppError) as exc_info:
        compute_splits(Decimal("10.00"), EqualPolicy(), [A, B])

    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
    assert exc_info.value.http_status == 500
