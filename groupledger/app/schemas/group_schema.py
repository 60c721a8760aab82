"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Field types, string lengths and non-blank names live here. Ownership,
membership and existence checks need the database and live in
services/group_service.py.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """validate.Length(min=1) alone accepts "   "; strip first."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _group_name_field() -> fields.Str:
    return fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class CreateGroupSchema(Schema):
    """POST /groups. The caller becomes owner and first member."""

    name = _group_name_field()


class RenameGroupSchema(Schema):
    """PATCH /groups/:id (owner only)."""

    name = _group_name_field()


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members (owner only).

    Whether the user exists is a DB concern (USER_NOT_FOUND, 404).
    """

    user_id = fields.Int(
        required=True,
        strict=True,  # integers only
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )
