"""
models/membership.py — Group membership table definition.

Memberships are never hard-deleted. Leaving or being removed sets deleted_at
and records how it happened; adding the user back reactivates the same row.
The balance engine reads inactive rows too, because their history still
affects everyone else's balance.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupledger.app.extensions import db


class RemovalType(str, enum.Enum):
    """Stored as removal_type_enum on memberships."""
    LEFT_VOLUNTARILY = "left_voluntarily"
    REMOVED_BY_OWNER = "removed_by_owner"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Store enum values ('left_voluntarily'), not names."""
    return [member.value for member in enum_cls]


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        # One row per (user, group); re-adding reactivates it.
        UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # NULL = active member.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # NULL while active.
    removal_type: Mapped[RemovalType | None] = mapped_column(
        Enum(
            RemovalType,
            name="removal_type_enum",
            values_callable=_enum_values,
        ),
        nullable=True,
    )

    removed_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
        foreign_keys=[user_id],
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"user_id={self.user_id} "
            f"group_id={self.group_id} "
            f"active={self.is_active}>"
        )
