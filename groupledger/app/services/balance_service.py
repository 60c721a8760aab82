"""
services/balance_service.py — Net balance computation for a group.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
Any change to how balances work must be made here; the group-deletion guard
and the balances endpoint both go through it.

Sign convention:
  positive = the member is owed money
  negative = the member owes money
  zero     = settled

Canonical formula, per user:
  + full amount of every active expense they paid
  − their split amount on every active expense
  + every payment they made
  − every payment they received

Soft-deleted expenses contribute nothing. Inactive members' history still
flows through everyone else's totals; they are only left out of the
returned map.

Layer rules:
  - aggregate_balances(), fold_ledger() and is_settled() are pure: plain
    objects in, dicts out, no session. Unit tests feed them SimpleNamespace.
  - compute_group_balances() and get_balance_response() load data through
    the membership provider and the expense/payment persistence helpers.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.services.expense_service import list_expenses_with_splits
from groupledger.app.services.group_service import (
    get_all_memberships,
    get_group_or_404,
    require_active_member,
)
from groupledger.app.services.payment_service import list_group_payments


CENT = Decimal("0.01")

# A balance this close to zero counts as settled.
SETTLEMENT_EPSILON = Decimal("0.005")


# ── Core algorithms ────────────────────────────────────────────────────────

def fold_ledger(expenses: Iterable, payments: Iterable) -> dict[int, Decimal]:
    """
    Folds expenses and payments into unrounded net amounts for every user id
    that appears, active or not.

    sum(result.values()) == 0 whenever every active expense's splits sum
    to its amount.
    """
    ledger: dict[int, Decimal] = defaultdict(Decimal)

    for expense in expenses:
        if expense.deleted_at is not None:
            continue
        ledger[expense.paid_by_user_id] += expense.amount
        for split in expense.splits:
            ledger[split.user_id] -= split.amount

    for payment in payments:
        ledger[payment.paid_by_user_id] += payment.amount
        ledger[payment.paid_to_user_id] -= payment.amount

    return dict(ledger)


def aggregate_balances(
        members: Iterable,
        expenses: Iterable,
        payments: Iterable,
) -> dict[int, Decimal]:
    """
    Net balance per currently active member.

    Args:
        members:  The full roster (objects with user_id and deleted_at).
                  Inactive rows are accepted and skipped in the result.
        expenses: Every expense of the group, soft-deleted ones included,
                  each with its splits.
        payments: Every payment of the group.

    Returns:
        {user_id: balance} in roster order, each rounded half-up to cents.
        Active members with no activity appear with Decimal("0.00").
    """
    ledger = fold_ledger(expenses, payments)

    return {
        member.user_id: ledger.get(member.user_id, Decimal("0")).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        for member in members
        if member.deleted_at is None
    }


def is_settled(balances: dict[int, Decimal]) -> bool:
    """True iff every balance is within ±SETTLEMENT_EPSILON of zero."""
    return all(abs(amount) <= SETTLEMENT_EPSILON for amount in balances.values())


# ── Session-backed entry points ────────────────────────────────────────────

def compute_group_balances(group_id: int, session: Session) -> dict[int, Decimal]:
    """Loads the group's roster, expenses and payments and aggregates them."""
    return aggregate_balances(
        get_all_memberships(group_id, session),
        list_expenses_with_splits(group_id, session, include_deleted=True),
        list_group_payments(group_id, session),
    )


def get_balance_response(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
        AppError(FORBIDDEN, 403)       — caller is not an active member.
        AppError(INTERNAL_ERROR, 500)  — the full ledger does not sum to zero,
                                         meaning stored splits are corrupt.
    """
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)

    memberships = get_all_memberships(group_id, session)
    expenses = list_expenses_with_splits(group_id, session, include_deleted=True)
    payments = list_group_payments(group_id, session)

    ledger_sum = sum(fold_ledger(expenses, payments).values(), Decimal("0"))
    if ledger_sum != 0:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Balance integrity check failed: ledger sum was {ledger_sum} (expected 0). "
            f"Group {group_id} has inconsistent financial data.",
            500,
        )

    balances = aggregate_balances(memberships, expenses, payments)
    usernames = {m.user_id: m.user.username for m in memberships}

    balance_list = sorted(
        (
            {
                "user_id":  user_id,
                "username": usernames[user_id],
                "balance":  amount,
            }
            for user_id, amount in balances.items()
        ),
        key=lambda entry: entry["username"],
    )

    return {
        "group_id": group_id,
        "balances": balance_list,
        "settled":  is_settled(balances),
    }
