"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                        → 201  create group
  GET    /groups                        → 200  list groups
  GET    /groups/:id                    → 200  get group + members
  PATCH  /groups/:id                    → 200  partial update
  DELETE /groups/:id                    → 200  delete group and its ledger
  GET    /groups/:id/summary            → 200  totals and recent payments
  POST   /groups/:id/members            → 201  add member
  DELETE /groups/:id/members/:uid       → 200  deactivate member
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.schemas.group_schema import (
    AddMemberSchema,
    CreateGroupSchema,
    PatchGroupSchema,
)
from backend.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
def create_group():
    """POST /groups — Create a new group. The creator becomes its admin."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
def list_groups():
    result = group_service.list_groups(session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
def get_group(group_id: int):
    """GET /groups/:id — Get group details with the active member list."""
    result = group_service.get_group(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
def update_group(group_id: int):
    data = PatchGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.update_group(
        group_id=group_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
def delete_group(group_id: int):
    """DELETE /groups/:id — Removes the group with its memberships, payments and balances."""
    group_service.delete_group(
        group_id=group_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "group_id": group_id,
        },
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/summary", methods=["GET"])
def get_group_summary(group_id: int):
    result = group_service.get_group_summary(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
def add_member(group_id: int):
    """POST /groups/:id/members — Add (or re-activate) a user in the group."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        user_id=data["user_id"],
        role=data["role"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:target_uid>", methods=["DELETE"])
def remove_member(group_id: int, target_uid: int):
    """
    DELETE /groups/:id/members/:uid — Deactivate a membership.
    The user's payments stay in the ledger.
    """
    group_service.remove_member(
        group_id=group_id,
        user_id=target_uid,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "removed": True,
            "group_id": group_id,
            "user_id": target_uid,
        },
        "warnings": [],
    }), 200
