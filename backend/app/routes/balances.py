"""
routes/balances.py — Balance and debt route handlers.

Layer rules:
  - Call ONE service, commit when it writes, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET  /groups/:id/balances              → 200  cached balances of active members
  POST /groups/:id/balances/recalculate  → 200  recompute, then return balances
  GET  /groups/:id/balances/:uid         → 200  one member's balance
  GET  /groups/:id/debts                 → 200  consolidated pairwise debts
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from backend.app.extensions import db
from backend.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    Reads the UserBalance cache, which every payment write and membership
    change refreshes. balance_sum is "0.00" for a consistent ledger.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/recalculate", methods=["POST"])
def recalculate_balances(group_id: int):
    """POST /groups/:id/balances/recalculate — Rebuild the cache from the ledger."""
    result = balance_service.recalculate_balance_response(
        group_id=group_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/<int:user_id>", methods=["GET"])
def get_user_balance(group_id: int, user_id: int):
    result = balance_service.get_user_balance_response(
        group_id=group_id,
        user_id=user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/debts", methods=["GET"])
def get_debts(group_id: int):
    """
    GET /groups/:id/debts

    One entry per (debtor, creditor) pair, summed over the group's payments.
    Opposite directions are reported separately, never netted.
    """
    result = balance_service.get_debt_breakdown_response(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
