"""
routes/users.py — User lookup.

Users are provisioned by the identity provider; the ledger only reads them.
The lookup lets a group owner find the id to pass to POST /groups/:id/members.
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from sqlalchemy import select

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.models.user import User

users_bp = Blueprint("users", __name__)


@users_bp.route("/by-username/<string:username>", methods=["GET"])
@require_auth
def get_user_by_username(username: str):
    user = db.session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()

    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User '{username}' not found.",
            404,
        )

    return jsonify({
        "data": {
            "id":         user.id,
            "username":   user.username,
            "email":      user.email,
            "created_at": user.created_at.isoformat(),
        },
        "warnings": [],
    }), 200
