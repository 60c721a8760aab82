"""
tests/integration/test_groups.py — Integration tests for groups and memberships.

Properties verified:
  - Creator becomes owner and first member
  - Rename, delete and restore are owner-only; delete requires settled balances
  - Deleted groups disappear from every read until restored
  - Leaving and removal keep the membership row, marked inactive
  - Re-adding a former member reactivates the same row and join position
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from .conftest import (
    add_member,
    auth_headers,
    make_expense,
    make_group,
    make_payment,
    make_user,
    token_for,
)


def _setup(app, client):
    alice = make_user(app, "alice")
    bob = make_user(app, "bob")
    group = make_group(client, alice["token"], name="Flat")
    add_member(client, alice["token"], group["id"], bob["id"])
    return alice, bob, group


def _members(client, token, group_id) -> list[dict]:
    return client.get(
        f"/api/v1/groups/{group_id}/members", headers=auth_headers(token),
    ).get_json()["data"]


class TestGroupLifecycle:

    def test_create_group_makes_caller_owner_and_member(self, app, client):
        alice = make_user(app, "alice")

        group = make_group(client, alice["token"], name="  Ski trip ")

        assert group["name"] == "Ski trip"
        assert group["owner_user_id"] == alice["id"]
        assert [m["user_id"] for m in group["members"]] == [alice["id"]]

    def test_list_groups_only_shows_own_groups(self, app, client):
        alice, bob, group = _setup(app, client)
        carol = make_user(app, "carol")
        make_group(client, carol["token"], name="Carol's")

        resp = client.get("/api/v1/groups", headers=auth_headers(bob["token"]))

        assert [g["name"] for g in resp.get_json()["data"]] == ["Flat"]

    def test_rename_by_owner(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.patch(
            f"/api/v1/groups/{group['id']}", json={"name": "House"},
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"]["name"] == "House"

    def test_rename_by_member_forbidden(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.patch(
            f"/api/v1/groups/{group['id']}", json={"name": "Mine"},
            headers=auth_headers(bob["token"]),
        )

        assert resp.status_code == 403

    def test_delete_unsettled_group_returns_422(self, app, client):
        alice, bob, group = _setup(app, client)
        make_expense(client, alice["token"], group["id"], "10.00")

        resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(alice["token"]))

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_SETTLED"

    def test_delete_settled_group_then_restore(self, app, client):
        alice, bob, group = _setup(app, client)
        make_expense(client, alice["token"], group["id"], "10.00")
        make_payment(client, bob["token"], group["id"], alice["id"], "5.00")

        resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(alice["token"]))
        assert resp.status_code == 200

        assert client.get(
            f"/api/v1/groups/{group['id']}", headers=auth_headers(alice["token"]),
        ).status_code == 404
        deleted = client.get("/api/v1/groups/deleted", headers=auth_headers(alice["token"]))
        assert [g["id"] for g in deleted.get_json()["data"]] == [group["id"]]
        assert client.get(
            "/api/v1/groups/deleted", headers=auth_headers(bob["token"]),
        ).get_json()["data"] == []

        restored = client.post(
            f"/api/v1/groups/{group['id']}/restore", headers=auth_headers(alice["token"]),
        )
        assert restored.status_code == 200
        assert restored.get_json()["data"]["deleted_at"] is None

    def test_restore_active_group_returns_409(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.post(f"/api/v1/groups/{group['id']}/restore", headers=auth_headers(alice["token"]))

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_DELETED"

    def test_delete_by_member_forbidden(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.delete(f"/api/v1/groups/{group['id']}", headers=auth_headers(bob["token"]))

        assert resp.status_code == 403


class TestMembership:

    def test_add_unknown_user_returns_404(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = add_member(client, alice["token"], group["id"], 9999)

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"

    def test_add_existing_member_returns_409(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = add_member(client, alice["token"], group["id"], bob["id"])

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_MEMBER"

    def test_non_owner_cannot_add(self, app, client):
        alice, bob, group = _setup(app, client)
        carol = make_user(app, "carol")

        resp = add_member(client, bob["token"], group["id"], carol["id"])

        assert resp.status_code == 403

    def test_leave_marks_membership_inactive(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.post(f"/api/v1/groups/{group['id']}/leave", headers=auth_headers(bob["token"]))

        assert resp.status_code == 200
        bob_row = [m for m in _members(client, alice["token"], group["id"]) if m["user_id"] == bob["id"]]
        assert bob_row[0]["is_active"] is False
        assert bob_row[0]["removal_type"] == "left_voluntarily"

    def test_owner_cannot_leave(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.post(f"/api/v1/groups/{group['id']}/leave", headers=auth_headers(alice["token"]))

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "OWNER_CANNOT_LEAVE"

    def test_owner_removes_member(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{bob['id']}", headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 200
        bob_row = [m for m in _members(client, alice["token"], group["id"]) if m["user_id"] == bob["id"]]
        assert bob_row[0]["removal_type"] == "removed_by_owner"
        assert bob_row[0]["removed_by_user_id"] == alice["id"]

    def test_remove_twice_returns_409(self, app, client):
        alice, bob, group = _setup(app, client)
        url = f"/api/v1/groups/{group['id']}/members/{bob['id']}"
        client.delete(url, headers=auth_headers(alice["token"]))

        resp = client.delete(url, headers=auth_headers(alice["token"]))

        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "ALREADY_INACTIVE"

    def test_owner_cannot_be_removed(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.delete(
            f"/api/v1/groups/{group['id']}/members/{alice['id']}", headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "OWNER_CANNOT_BE_REMOVED"

    def test_readd_reactivates_with_original_position(self, app, client):
        alice, bob, group = _setup(app, client)
        carol = make_user(app, "carol")
        add_member(client, alice["token"], group["id"], carol["id"])
        client.post(f"/api/v1/groups/{group['id']}/leave", headers=auth_headers(bob["token"]))

        resp = add_member(client, alice["token"], group["id"], bob["id"])

        assert resp.status_code == 201
        assert resp.get_json()["data"]["is_active"] is True
        members = _members(client, alice["token"], group["id"])
        assert [m["user_id"] for m in members] == [alice["id"], bob["id"], carol["id"]]
        assert len(members) == 3

    def test_user_lookup_by_username(self, app, client):
        alice, bob, group = _setup(app, client)

        resp = client.get("/api/v1/users/by-username/bob", headers=auth_headers(alice["token"]))

        assert resp.status_code == 200
        assert resp.get_json()["data"]["id"] == bob["id"]


class TestAuthentication:

    def test_expired_token_returns_401(self, app, client):
        alice = make_user(app, "alice")
        token = token_for(app, alice["id"], expires_in=timedelta(seconds=-10))

        resp = client.get("/api/v1/groups", headers=auth_headers(token))

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_malformed_header_returns_401(self, client):
        resp = client.get("/api/v1/groups", headers={"Authorization": "Token abc"})

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"

    def test_token_without_numeric_subject_returns_401(self, app, client):
        token = jwt.encode(
            {"sub": "alice", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            app.config["JWT_SECRET_KEY"],
            algorithm=app.config["JWT_ALGORITHM"],
        )

        resp = client.get("/api/v1/groups", headers=auth_headers(token))

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"

    def test_bearer_scheme_without_token_returns_401(self, client):
        resp = client.get("/api/v1/groups", headers={"Authorization": "Bearer"})

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"
