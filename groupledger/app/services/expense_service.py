"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  PAYER_NOT_MEMBER (422)  — the payer must be an active group member
  EXPENSE_DELETED (422)   — a soft-deleted expense cannot be edited
  FORBIDDEN (403)         — caller must be an active member; only the payer
                            or the group owner may edit or delete
  SPLITS_REQUIRED (400)   — switching to a weighted split type needs splits
  Split policy errors     — raised by split_calculator before any write

Authorization rules:
  - Create / list / get: caller must be an active member of the group
  - Edit / delete:       caller must be the expense's payer OR the group owner

Split computation:
  All division goes through split_calculator.compute_splits(). This module
  only decides WHICH policy and WHICH participants to hand it:
    - participants are always the group's active members, in joined order
    - the policy comes from the request, or on edit from the stored weights

Edit reconciliation:
  - A change to amount, split_type or splits recomputes every split from
    scratch: old rows are deleted, new rows inserted.
  - Weights come from the request's splits when sent. Otherwise, when the
    split type is unchanged, they are the weights stored on the current
    rows. Equal splits always use the current active membership.
  - Changing to a weighted type without new splits is rejected; weights
    never carry over between split types.
  - Description, transaction_date or payer changes alone never recompute.
  - Everything is validated before the first write.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain ints and dicts; returns ORM objects or raises AppError.
  - Commits are the unit of work's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.models.expense import Expense
from groupledger.app.models.group import Group
from groupledger.app.models.split import Split
from groupledger.app.services.group_service import (
    get_active_member_ids,
    get_group_or_404,
    require_active_member,
)
from groupledger.app.services.split_calculator import (
    EqualPolicy,
    SplitPolicy,
    SplitType,
    WEIGHT_FIELDS,
    build_policy,
    compute_splits,
    parse_split_type,
)

logger = logging.getLogger(__name__)


# ── Persistence helpers ────────────────────────────────────────────────────

def list_expenses_with_splits(
        group_id: int,
        session: Session,
        include_deleted: bool = True,
) -> list[Expense]:
    """
    Returns a group's expenses with their splits eagerly loaded, oldest first.

    The balance engine passes include_deleted=True and skips soft-deleted
    rows itself, so the full history is available to it.
    """
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at.asc(), Expense.id.asc())
    )
    if not include_deleted:
        stmt = stmt.where(Expense.deleted_at.is_(None))

    return list(session.execute(stmt).scalars().all())


def delete_splits(expense: Expense, session: Session) -> None:
    """
    Removes every split row of an expense.

    Flushed immediately so the deletes reach the database before new rows
    for the same (expense_id, user_id) pairs are inserted.
    """
    expense.splits.clear()
    session.flush()


def save_expense_with_splits(
        expense: Expense,
        splits: list[dict],
        session: Session,
) -> Expense:
    """
    Persists an expense and one Split row per computed entry.

    `splits` is the output of compute_splits(); zero-amount entries are kept
    so the stored weights stay complete.
    """
    if expense.id is None:
        session.add(expense)
        session.flush()  # populate expense.id before creating splits

    for entry in splits:
        expense.splits.append(
            Split(
                user_id=entry["user_id"],
                amount=entry["amount"],
                weight=entry["weight"],
            )
        )
    session.flush()
    return expense


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _validate_payer_is_member(
        paid_by_user_id: int,
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises PAYER_NOT_MEMBER (422) if the payer is not an active member."""
    if paid_by_user_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by_user_id} is not a member of group {group_id}.",
            422,
            field="paid_by_user_id",
        )


def _require_payer_or_owner(expense: Expense, group: Group, caller_id: int, action: str) -> None:
    if caller_id not in (expense.paid_by_user_id, group.owner_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the original payer or group owner may {action} this expense.",
            403,
        )


def _stored_policy(expense: Expense) -> SplitPolicy:
    """Rebuilds a weighted policy from the weights stored on the current split rows."""
    field = WEIGHT_FIELDS[expense.split_type]
    return build_policy(
        expense.split_type,
        [{"user_id": split.user_id, field: split.weight} for split in expense.splits],
    )


def _resolve_edit_policy(expense: Expense, data: dict) -> tuple[SplitType, SplitPolicy]:
    """
    Picks the split type and policy for an edit that triggers a recompute.

    Raises:
        UnsupportedPolicy (400)                — unknown split_type
        SPLITS_SENT_FOR_EQUAL_SPLIT (400)      — splits sent for an equal split
        SPLITS_REQUIRED (400)                  — weighted type change without splits
    """
    target_type = (
        parse_split_type(data["split_type"])
        if data.get("split_type") is not None
        else SplitType(expense.split_type)
    )
    new_splits = data.get("splits")

    if target_type is SplitType.EQUAL:
        if new_splits is not None:
            raise AppError(
                ErrorCode.SPLITS_SENT_FOR_EQUAL_SPLIT,
                "Do not send a splits array when split_type is 'equal'.",
                400,
                field="splits",
            )
        return target_type, EqualPolicy()

    if new_splits is not None:
        return target_type, build_policy(target_type, new_splits)

    if target_type != expense.split_type:
        raise AppError(
            ErrorCode.SPLITS_REQUIRED,
            f"A splits array is required when changing split_type to '{target_type.value}'.",
            400,
            field="splits",
        )

    return target_type, _stored_policy(expense)


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense for a group.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The authenticated user creating the expense (from flask.g).
        data:      Validated dict from CreateExpenseSchema.

    The payer defaults to the caller. Splits are computed across the
    group's active members before any row is written.

    Returns:
        The newly created Expense ORM object with its splits.
    """
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)

    paid_by_user_id: int = data.get("paid_by_user_id") or caller_id
    amount: Decimal = data["amount"]

    member_ids = get_active_member_ids(group_id, session)
    _validate_payer_is_member(paid_by_user_id, group_id, member_ids)

    policy = build_policy(data.get("split_type", SplitType.EQUAL), data.get("splits"))
    splits = compute_splits(amount, policy, member_ids)

    expense = Expense(
        group_id=group_id,
        paid_by_user_id=paid_by_user_id,
        description=data["description"].strip(),
        amount=amount,
        split_type=policy.split_type,
        transaction_date=data.get("transaction_date") or date.today(),
    )
    save_expense_with_splits(expense, splits, session)

    logger.info(
        "Expense %s created in group %s: %s %s split across %d members",
        expense.id, group_id, amount, policy.split_type.value, len(splits),
    )
    return expense


def list_expenses(
        group_id: int,
        caller_id: int,
        session: Session,
        include_deleted: bool = False,
) -> list[Expense]:
    """
    Returns a group's expenses, newest first.

    Soft-deleted expenses are left out unless include_deleted is set.
    """
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)

    expenses = list_expenses_with_splits(group_id, session, include_deleted=include_deleted)
    return list(reversed(expenses))


def get_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> Expense:
    """
    Returns a single expense including its splits.

    Soft-deleted expenses are returned too; deleted_at tells the client.
    """
    expense = _get_expense_or_404(expense_id, session)
    get_group_or_404(expense.group_id, session)
    require_active_member(expense.group_id, caller_id, session)
    return expense


def edit_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> Expense:
    """
    Partially updates an expense. See the module docstring for the
    reconciliation rules.

    Args:
        expense_id: The expense to edit.
        caller_id:  Authenticated user making the edit (from flask.g).
        data:       Validated partial dict from PatchExpenseSchema.

    Returns:
        The updated Expense ORM object.
    """
    expense = _get_expense_or_404(expense_id, session)
    group = get_group_or_404(expense.group_id, session)
    require_active_member(expense.group_id, caller_id, session)

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )

    _require_payer_or_owner(expense, group, caller_id, "edit")

    # ── Validate everything before the first write ─────────────────────────

    member_ids = get_active_member_ids(expense.group_id, session)

    if "paid_by_user_id" in data:
        _validate_payer_is_member(data["paid_by_user_id"], expense.group_id, member_ids)

    recompute = any(key in data for key in ("amount", "split_type", "splits"))
    if recompute:
        target_type, policy = _resolve_edit_policy(expense, data)
        new_amount: Decimal = data.get("amount", expense.amount)
        new_splits = compute_splits(new_amount, policy, member_ids)

    # ── Apply ──────────────────────────────────────────────────────────────

    if "description" in data:
        expense.description = data["description"].strip()

    if "transaction_date" in data:
        expense.transaction_date = data["transaction_date"]

    if "paid_by_user_id" in data:
        expense.paid_by_user_id = data["paid_by_user_id"]

    if recompute:
        expense.amount = new_amount
        expense.split_type = target_type
        delete_splits(expense, session)
        save_expense_with_splits(expense, new_splits, session)

    expense.updated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info(
        "Expense %s edited by user %s (splits recomputed: %s)",
        expense_id, caller_id, recompute,
    )
    return expense


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Soft-deletes an expense by setting deleted_at = NOW().

    The row and its splits stay in the database; the balance engine skips
    it. Deleting an already-deleted expense is a no-op.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404) — expense does not exist.
        AppError(FORBIDDEN, 403)         — caller is not payer or owner.
    """
    expense = _get_expense_or_404(expense_id, session)
    group = get_group_or_404(expense.group_id, session)
    require_active_member(expense.group_id, caller_id, session)
    _require_payer_or_owner(expense, group, caller_id, "delete")

    if not expense.is_deleted:
        expense.deleted_at = datetime.now(timezone.utc)
        session.flush()
        logger.info("Expense %s deleted by user %s", expense_id, caller_id)
