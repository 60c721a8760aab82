"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig points at an in-memory SQLite database unless
    TEST_DATABASE_URL names a real PostgreSQL instance.
  - Every test starts from freshly created tables and drops them afterwards,
    so tests are isolated without depending on delete order.
  - Users are provisioned by the identity provider in production, so tests
    insert User rows directly and sign their own bearer tokens with the
    testing JWT_SECRET_KEY.

Helper functions (not fixtures) are provided for common operations:
  - make_user(app, ...)      → {"id": ..., "username": ..., "token": ...}
  - auth_headers(token)      → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)  → group dict
  - add_member(...)          → HTTP response
  - make_expense(...)        → HTTP response
  - make_payment(...)        → HTTP response
  - get_balances(...)        → {user_id: Decimal} from the balances endpoint

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest

from groupledger.app import create_app
from groupledger.app.extensions import db as _db
from groupledger.app.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the entire test session."""
    return create_app("testing")


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def fresh_schema(app):
    """
    Creates every table before the test and drops them after it.

    autouse=True means this runs around EVERY test in the integration suite
    without needing to be declared in each test function.
    """
    with app.app_context():
        _db.create_all()

    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def token_for(app, user_id: int, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Signs a bearer token the way the identity provider would."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(
        payload,
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config["JWT_ALGORITHM"],
    )


def make_user(app, username: str = "alice", email: str | None = None) -> dict:
    """
    Inserts a user row and returns {"id", "username", "token"}.
    """
    if email is None:
        email = f"{username}@test.com"

    with app.app_context():
        user = User(username=username, email=email)
        _db.session.add(user)
        _db.session.commit()
        user_id = user.id

    return {"id": user_id, "username": username, "token": token_for(app, user_id)}


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(client, token: str, name: str = "Test Group") -> dict:
    """
    Creates a group and returns the group data dict.
    The caller (token owner) becomes the group owner and first member.
    """
    resp = client.post(
        "/api/v1/groups",
        json={"name": name},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, group_id: int, user_id: int):
    """Adds a user to a group (owner token required). Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json={"user_id": user_id},
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    group_id: int,
    amount: str,
    split_type: str = "equal",
    splits: list[dict] | None = None,
    paid_by_user_id: int | None = None,
    description: str = "Test Expense",
):
    """
    Creates an expense and returns the HTTP response.
    For split_type='equal', do not pass splits; the server splits across
    every active member. For the weighted types pass
    [{"user_id": ..., "<amount|percentage|shares>": ...}, ...].
    """
    payload: dict = {
        "description": description,
        "amount": amount,
        "split_type": split_type,
    }
    if splits is not None:
        payload["splits"] = splits
    if paid_by_user_id is not None:
        payload["paid_by_user_id"] = paid_by_user_id

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def make_payment(client, token: str, group_id: int, paid_to_user_id: int, amount: str):
    """Records a payment from the token owner to paid_to_user_id. Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/payments",
        json={"paid_to_user_id": paid_to_user_id, "amount": amount},
        headers=auth_headers(token),
    )


def get_balances(client, token: str, group_id: int) -> dict[int, Decimal]:
    """Returns the balances endpoint's result as {user_id: Decimal}."""
    resp = client.get(f"/api/v1/groups/{group_id}/balances", headers=auth_headers(token))
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return {
        entry["user_id"]: Decimal(entry["balance"])
        for entry in resp.get_json()["data"]["balances"]
    }
