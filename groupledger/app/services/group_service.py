"""
services/group_service.py — Group and membership business logic.

This module is also the group's membership provider. Other services ask it
who is in a group instead of querying memberships themselves:

  get_active_member_ids()  — current members, in joined order
  get_all_memberships()    — every membership row, active or not

Authorization rules:
  - Reading group data:          active members only (FORBIDDEN, 403)
  - Rename / delete / restore:   group owner only
  - Adding or removing members:  group owner only
  - Leaving:                     any active member except the owner

Memberships are soft-deleted. Leaving or being removed marks the row
inactive; adding the user back reactivates the same row.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the unit of work's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.models.group import Group
from groupledger.app.models.membership import Membership, RemovalType
from groupledger.app.models.user import User

logger = logging.getLogger(__name__)


# ── Lookup helpers (shared with the other services) ────────────────────────

def get_group_or_404(
        group_id: int,
        session: Session,
        include_deleted: bool = False,
) -> Group:
    """
    Returns the Group or raises GROUP_NOT_FOUND (404).

    A soft-deleted group is treated as missing unless include_deleted is set.
    """
    group = session.get(Group, group_id)
    if group is None or (group.is_deleted and not include_deleted):
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    """Returns the membership row for (group, user), active or not."""
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def require_active_member(group_id: int, user_id: int, session: Session) -> None:
    """
    Raises FORBIDDEN (403) unless user_id is an active member of group_id.
    Non-members receive 403, not 404.
    """
    membership = get_membership(group_id, user_id, session)
    if membership is None or not membership.is_active:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )


def _require_owner(group: Group, caller_id: int, action: str) -> None:
    if caller_id != group.owner_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the group owner may {action}.",
            403,
        )


def get_active_member_ids(group_id: int, session: Session) -> list[int]:
    """
    Returns the user_ids of the group's active members, in the order they
    joined. This order decides who absorbs remainder cents in equal splits.
    """
    stmt = (
        select(Membership.user_id)
        .where(
            Membership.group_id == group_id,
            Membership.deleted_at.is_(None),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_all_memberships(group_id: int, session: Session) -> list[Membership]:
    """Returns every membership of the group, active and inactive, in joined order."""
    stmt = (
        select(Membership)
        .where(Membership.group_id == group_id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Serialisation ──────────────────────────────────────────────────────────

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _serialize_membership(membership: Membership) -> dict:
    return {
        "user_id":            membership.user_id,
        "username":           membership.user.username,
        "email":              membership.user.email,
        "joined_at":          _iso(membership.joined_at),
        "is_active":          membership.is_active,
        "removed_at":         _iso(membership.deleted_at),
        "removal_type":       membership.removal_type.value if membership.removal_type else None,
        "removed_by_user_id": membership.removed_by_user_id,
    }


def _serialize_group(group: Group, memberships: list[Membership] | None = None) -> dict:
    payload = {
        "id":            group.id,
        "name":          group.name,
        "owner_user_id": group.owner_user_id,
        "created_at":    _iso(group.created_at),
        "updated_at":    _iso(group.updated_at),
        "deleted_at":    _iso(group.deleted_at),
    }
    if memberships is not None:
        payload["members"] = [_serialize_membership(m) for m in memberships]
    return payload


# ── Groups ─────────────────────────────────────────────────────────────────

def create_group(name: str, owner_id: int, session: Session) -> dict:
    """
    Creates a new group. The creator becomes the owner and the first member.

    Args:
        name:     Group name (validated by schema — non-empty, max 100 chars).
        owner_id: The authenticated user creating the group.
    """
    group = Group(name=name.strip(), owner_user_id=owner_id)
    session.add(group)
    session.flush()  # populate group.id before creating membership

    membership = Membership(user_id=owner_id, group_id=group.id)
    session.add(membership)
    session.flush()

    logger.info("Group %s created by user %s", group.id, owner_id)
    return _serialize_group(group, [membership])


def list_groups(user_id: int, session: Session) -> list[dict]:
    """Returns the active groups the user currently belongs to, oldest first."""
    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.user_id == user_id,
            Membership.deleted_at.is_(None),
            Group.deleted_at.is_(None),
        )
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [_serialize_group(g) for g in session.execute(stmt).scalars().all()]


def list_deleted_groups(user_id: int, session: Session) -> list[dict]:
    """Returns the soft-deleted groups owned by the user, most recently deleted first."""
    stmt = (
        select(Group)
        .where(
            Group.owner_user_id == user_id,
            Group.deleted_at.is_not(None),
        )
        .order_by(Group.deleted_at.desc(), Group.id.desc())
    )
    return [_serialize_group(g) for g in session.execute(stmt).scalars().all()]


def get_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Returns group details with the full member roster, inactive members included."""
    group = get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)
    return _serialize_group(group, get_all_memberships(group_id, session))


def rename_group(group_id: int, caller_id: int, name: str, session: Session) -> dict:
    """Renames a group. Owner only."""
    group = get_group_or_404(group_id, session)
    _require_owner(group, caller_id, "rename the group")

    group.name = name.strip()
    group.updated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info("Group %s renamed by user %s", group_id, caller_id)
    return _serialize_group(group)


def delete_group(group_id: int, caller_id: int, session: Session) -> None:
    """
    Soft-deletes a group. Owner only.

    Raises:
      AppError(GROUP_NOT_SETTLED, 422) — some active member still has a
                                         non-zero balance.
    """
    from groupledger.app.services.balance_service import compute_group_balances, is_settled

    group = get_group_or_404(group_id, session)
    _require_owner(group, caller_id, "delete the group")

    if not is_settled(compute_group_balances(group_id, session)):
        raise AppError(
            ErrorCode.GROUP_NOT_SETTLED,
            "All balances must be settled before the group can be deleted.",
            422,
        )

    group.deleted_at = datetime.now(timezone.utc)
    session.flush()
    logger.info("Group %s deleted by user %s", group_id, caller_id)


def restore_group(group_id: int, caller_id: int, session: Session) -> dict:
    """Clears a group's deleted_at. Owner only; GROUP_NOT_DELETED (409) if it is active."""
    group = get_group_or_404(group_id, session, include_deleted=True)
    _require_owner(group, caller_id, "restore the group")

    if not group.is_deleted:
        raise AppError(
            ErrorCode.GROUP_NOT_DELETED,
            f"Group {group_id} is not deleted.",
            409,
        )

    group.deleted_at = None
    group.updated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info("Group %s restored by user %s", group_id, caller_id)
    return _serialize_group(group)


# ── Members ────────────────────────────────────────────────────────────────

def list_members(group_id: int, caller_id: int, session: Session) -> list[dict]:
    """Returns every membership of the group, inactive members included."""
    get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)
    return [_serialize_membership(m) for m in get_all_memberships(group_id, session)]


def add_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> dict:
    """
    Adds a user to a group, or reactivates their inactive membership.
    Only the group owner may call this.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)  — group does not exist
      AppError(FORBIDDEN, 403)        — caller is not the group owner
      AppError(USER_NOT_FOUND, 404)   — target user does not exist
      AppError(ALREADY_MEMBER, 409)   — user is already an active member
    """
    group = get_group_or_404(group_id, session)
    _require_owner(group, caller_id, "add members")

    target_user = session.get(User, target_user_id)
    if target_user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {target_user_id} does not exist.",
            404,
            field="user_id",
        )

    membership = get_membership(group_id, target_user_id, session)

    if membership is not None and membership.is_active:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user_id} is already a member of group {group_id}.",
            409,
        )

    if membership is None:
        membership = Membership(user_id=target_user_id, group_id=group_id)
        session.add(membership)
        logger.info("User %s added to group %s", target_user_id, group_id)
    else:
        # Reactivate; the original joined_at keeps the member's roster position.
        membership.deleted_at = None
        membership.removal_type = None
        membership.removed_by_user_id = None
        logger.info("User %s re-added to group %s", target_user_id, group_id)

    session.flush()
    return _serialize_membership(membership)


def _deactivate(
        membership: Membership,
        removal_type: RemovalType,
        removed_by: int,
        session: Session,
) -> None:
    membership.deleted_at = datetime.now(timezone.utc)
    membership.removal_type = removal_type
    membership.removed_by_user_id = removed_by
    session.flush()


def remove_member(
        group_id: int,
        caller_id: int,
        target_user_id: int,
        session: Session,
) -> None:
    """
    Marks another member inactive. Owner only.

    The member's expenses, splits and payments stay in the ledger; they only
    disappear from the balance map.

    Raises:
      AppError(FORBIDDEN, 403)                — caller is not the owner
      AppError(OWNER_CANNOT_BE_REMOVED, 422)  — target is the owner
      AppError(MEMBER_NOT_FOUND, 404)         — target never joined the group
      AppError(ALREADY_INACTIVE, 409)         — target already left or was removed
    """
    group = get_group_or_404(group_id, session)
    _require_owner(group, caller_id, "remove members")

    if target_user_id == group.owner_user_id:
        raise AppError(
            ErrorCode.OWNER_CANNOT_BE_REMOVED,
            "The group owner cannot be removed from the group.",
            422,
        )

    membership = get_membership(group_id, target_user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {target_user_id} is not a member of group {group_id}.",
            404,
        )
    if not membership.is_active:
        raise AppError(
            ErrorCode.ALREADY_INACTIVE,
            f"User {target_user_id} is no longer a member of group {group_id}.",
            409,
        )

    _deactivate(membership, RemovalType.REMOVED_BY_OWNER, caller_id, session)
    logger.info("User %s removed from group %s by user %s", target_user_id, group_id, caller_id)


def leave_group(group_id: int, caller_id: int, session: Session) -> None:
    """
    Marks the caller's own membership inactive.

    Raises:
      AppError(FORBIDDEN, 403)           — caller is not an active member
      AppError(OWNER_CANNOT_LEAVE, 422)  — the owner must delete the group instead
    """
    group = get_group_or_404(group_id, session)
    require_active_member(group_id, caller_id, session)

    if caller_id == group.owner_user_id:
        raise AppError(
            ErrorCode.OWNER_CANNOT_LEAVE,
            "The group owner cannot leave the group.",
            422,
        )

    membership = get_membership(group_id, caller_id, session)
    _deactivate(membership, RemovalType.LEFT_VOLUNTARILY, caller_id, session)
    logger.info("User %s left group %s", caller_id, group_id)
