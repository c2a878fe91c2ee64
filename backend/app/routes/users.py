"""
routes/users.py — User route handlers.

Endpoints (base url_prefix=/api/v1/users):
  POST   /users              → 201  create user
  GET    /users              → 200  list users
  GET    /users/:id          → 200  get user
  PATCH  /users/:id          → 200  partial update
  DELETE /users/:id          → 200  delete (only without ledger history)
  GET    /users/:id/groups   → 200  groups the user is an active member of
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.schemas.user_schema import CreateUserSchema, PatchUserSchema
from backend.app.services import group_service, user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/", methods=["POST"])
def create_user():
    data = CreateUserSchema().load(request.get_json(force=True) or {})
    result = user_service.create_user(data=data, session=db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@users_bp.route("/", methods=["GET"])
def list_users():
    result = user_service.list_users(session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["GET"])
def get_user(user_id: int):
    result = user_service.get_user(user_id=user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["PATCH"])
def update_user(user_id: int):
    data = PatchUserSchema().load(request.get_json(force=True) or {})
    result = user_service.update_user(
        user_id=user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<int:user_id>", methods=["DELETE"])
def delete_user(user_id: int):
    """DELETE /users/:id — Refused with USER_IN_USE while the user has ledger history."""
    user_service.delete_user(user_id=user_id, session=db.session)
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "user_id": user_id,
        },
        "warnings": [],
    }), 200


@users_bp.route("/<int:user_id>/groups", methods=["GET"])
def list_user_groups(user_id: int):
    result = group_service.get_groups_for_user(user_id=user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
