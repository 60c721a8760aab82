"""
middleware/auth_middleware.py — Caller identity for ledger routes.

The ledger has no login, signup or refresh endpoint. Users are provisioned
by an outside identity service, which hands clients an HS256 access token
signed with the JWT_SECRET_KEY both sides share. The ledger trusts exactly
one thing from that token: the `sub` claim, read as the numeric id of a
row in the users table.

@require_auth resolves that id into flask.g.user_id before the view runs.
Every failure is a 401 carrying one of:

  TOKEN_MISSING  no Authorization header at all
  TOKEN_EXPIRED  signature checks out but `exp` has passed
  TOKEN_INVALID  anything else: wrong scheme, bad signature, no usable `sub`

Whether the caller may touch a given group or expense is decided later by
the services (403), from the plain int the route passes them.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from groupledger.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator; the wrapped view can rely on g.user_id being an int.

        @expenses_bp.route("/<int:expense_id>", methods=["GET"])
        @require_auth
        def get_expense(expense_id):
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _authenticate_request() -> None:
    claims = _decode(_bearer_token())
    g.user_id = _caller_id(claims)


def _invalid(message: str) -> AppError:
    return AppError(ErrorCode.TOKEN_INVALID, message, 401)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "This endpoint needs an access token from the identity service.",
            401,
        )

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _invalid("Send the access token as 'Authorization: Bearer <token>'.")
    return token


def _decode(token: str) -> dict:
    """Signature and expiry check only; the ledger defines no custom claims."""
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "Access token expired; request a fresh one from the identity service.",
            401,
        )
    except jwt.InvalidTokenError:
        raise _invalid("Access token could not be verified.")


def _caller_id(claims: dict) -> int:
    # The identity service writes user ids as strings or ints.
    sub = claims.get("sub")
    if isinstance(sub, bool) or not isinstance(sub, (int, str)):
        raise _invalid("Access token does not name a ledger user.")
    try:
        return int(sub)
    except ValueError:
        raise _invalid("Access token does not name a ledger user.")
