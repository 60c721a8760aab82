"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service inside a unit of work, return envelope.
  - No business logic. No DB queries.

Endpoints (url_prefix=/api/v1/groups):
  POST   /groups                     → 201  create group
  GET    /groups                     → 200  list caller's active groups
  GET    /groups/deleted             → 200  list caller's deleted groups
  GET    /groups/:id                 → 200  get group + members
  PATCH  /groups/:id                 → 200  rename (owner only)
  DELETE /groups/:id                 → 200  soft-delete (owner only, settled only)
  POST   /groups/:id/restore         → 200  restore (owner only)
  GET    /groups/:id/members         → 200  list members, inactive included
  POST   /groups/:id/members         → 201  add or reactivate member (owner only)
  DELETE /groups/:id/members/:uid    → 200  remove member (owner only)
  POST   /groups/:id/leave           → 200  leave group (non-owner)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.schemas.group_schema import (
    AddMemberSchema,
    CreateGroupSchema,
    RenameGroupSchema,
)
from groupledger.app.services import group_service
from groupledger.app.services.unit_of_work import unit_of_work

groups_bp = Blueprint("groups", __name__)


# ── Groups ─────────────────────────────────────────────────────────────────

@groups_bp.route("", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a new group. Caller becomes owner and first member."""
    data = CreateGroupSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        result = group_service.create_group(
            name=data["name"],
            owner_id=g.user_id,
            session=session,
        )
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("", methods=["GET"])
@require_auth
def list_groups():
    result = group_service.list_groups(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/deleted", methods=["GET"])
@require_auth
def list_deleted_groups():
    result = group_service.list_deleted_groups(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Group details with member roster. Caller must be a member."""
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
@require_auth
def rename_group(group_id: int):
    data = RenameGroupSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        result = group_service.rename_group(
            group_id=group_id,
            caller_id=g.user_id,
            name=data["name"],
            session=session,
        )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: int):
    """DELETE /groups/:id — Soft-delete. Refused while any balance is outstanding."""
    with unit_of_work(db.session) as session:
        group_service.delete_group(
            group_id=group_id,
            caller_id=g.user_id,
            session=session,
        )
    return jsonify({
        "data": {"deleted": True, "group_id": group_id},
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/restore", methods=["POST"])
@require_auth
def restore_group(group_id: int):
    with unit_of_work(db.session) as session:
        result = group_service.restore_group(
            group_id=group_id,
            caller_id=g.user_id,
            session=session,
        )
    return jsonify({"data": result, "warnings": []}), 200


# ── Members ────────────────────────────────────────────────────────────────

@groups_bp.route("/<int:group_id>/members", methods=["GET"])
@require_auth
def list_members(group_id: int):
    result = group_service.list_members(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
def add_member(group_id: int):
    """POST /groups/:id/members — Add a user, or reactivate a former member."""
    data = AddMemberSchema().load(request.get_json(silent=True) or {})
    with unit_of_work(db.session) as session:
        result = group_service.add_member(
            group_id=group_id,
            caller_id=g.user_id,
            target_user_id=data["user_id"],
            session=session,
        )
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:user_id>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, user_id: int):
    """DELETE /groups/:id/members/:uid — Owner marks another member inactive."""
    with unit_of_work(db.session) as session:
        group_service.remove_member(
            group_id=group_id,
            caller_id=g.user_id,
            target_user_id=user_id,
            session=session,
        )
    return jsonify({
        "data": {"removed": True, "group_id": group_id, "user_id": user_id},
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/leave", methods=["POST"])
@require_auth
def leave_group(group_id: int):
    with unit_of_work(db.session) as session:
        group_service.leave_group(
            group_id=group_id,
            caller_id=g.user_id,
            session=session,
        )
    return jsonify({
        "data": {"left": True, "group_id": group_id, "user_id": g.user_id},
        "warnings": [],
    }), 200
