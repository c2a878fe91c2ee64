"""
routes/payments.py — Payment route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/payments) because this blueprint
owns BOTH the group-scoped paths (/groups/:id/payments) and the
payment-ID paths (/payments/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - _serialize_payment() is a pure data-shape helper — not business logic.

Endpoints:
  POST   /groups/:id/payments                  → 201  record payment
  GET    /groups/:id/payments                  → 200  list payments (newest first)
  GET    /payments/:id                         → 200  payment + participants
  PATCH  /payments/:id                         → 200  partial update
  DELETE /payments/:id                         → 200  delete
  GET    /payments/:id/participants            → 200  participant list
  PATCH  /payments/:id/participants/:uid       → 200  mark share paid / unpaid
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.models.payment import Payment
from backend.app.models.payment_participant import PaymentParticipant
from backend.app.schemas.payment_schema import (
    CreatePaymentSchema,
    PatchParticipantSchema,
    PatchPaymentSchema,
)
from backend.app.services import payment_service

payments_bp = Blueprint("payments", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────
# Pure data-shaping. Amounts as strings.

def _serialize_participant(participant: PaymentParticipant) -> dict:
    return {
        "id": participant.id,
        "payment_id": participant.payment_id,
        "user_id": participant.user_id,
        "name": participant.user.name,
        "share": str(participant.share),
        "is_paid": participant.is_paid,
    }


def _serialize_payment(payment: Payment) -> dict:
    """Converts a Payment ORM object to a plain dict for JSON output."""
    return {
        "id": payment.id,
        "group_id": payment.group_id,
        "paid_by": payment.paid_by,
        "paid_by_name": payment.payer.name,
        "amount": str(payment.amount),
        "description": payment.description,
        "category": payment.category.value,
        "split_mode": payment.split_mode.value,
        "date": payment.date.isoformat(),
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
        "updated_at": payment.updated_at.isoformat() if payment.updated_at else None,
        "participants": [_serialize_participant(p) for p in payment.participants],
    }


# ── Group-scoped payment routes ────────────────────────────────────────────

@payments_bp.route("/groups/<int:group_id>/payments", methods=["POST"])
def create_payment(group_id: int):
    """
    POST /groups/:id/payments — Record a new payment.
    Handles both 'equal' (server computes shares) and 'custom' modes.
    """
    data = CreatePaymentSchema().load(request.get_json(force=True) or {})
    payment = payment_service.create_payment(
        group_id=group_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 201


@payments_bp.route("/groups/<int:group_id>/payments", methods=["GET"])
def list_payments(group_id: int):
    """GET /groups/:id/payments — List a group's payments, newest first."""
    payments = payment_service.list_payments(
        group_id=group_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_payment(p) for p in payments],
        "warnings": [],
    }), 200


# ── Payment-ID routes ──────────────────────────────────────────────────────

@payments_bp.route("/payments/<int:payment_id>", methods=["GET"])
def get_payment(payment_id: int):
    """GET /payments/:id — Get payment detail including participants."""
    payment = payment_service.get_payment(
        payment_id=payment_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 200


@payments_bp.route("/payments/<int:payment_id>", methods=["PATCH"])
def update_payment(payment_id: int):
    """
    PATCH /payments/:id — Partial update.
    Shares are re-derived when amount, paid_by, split_mode or participants change.
    """
    data = PatchPaymentSchema().load(request.get_json(force=True) or {})
    payment = payment_service.update_payment(
        payment_id=payment_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_payment(payment), "warnings": []}), 200


@payments_bp.route("/payments/<int:payment_id>", methods=["DELETE"])
def delete_payment(payment_id: int):
    """DELETE /payments/:id — Remove the payment and its shares; balances are recomputed."""
    payment_service.delete_payment(
        payment_id=payment_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "payment_id": payment_id,
        },
        "warnings": [],
    }), 200


# ── Participant routes ─────────────────────────────────────────────────────

@payments_bp.route("/payments/<int:payment_id>/participants", methods=["GET"])
def list_participants(payment_id: int):
    participants = payment_service.get_payment_participants(
        payment_id=payment_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_participant(p) for p in participants],
        "warnings": [],
    }), 200


@payments_bp.route("/payments/<int:payment_id>/participants/<int:user_id>", methods=["PATCH"])
def update_participant(payment_id: int, user_id: int):
    """
    PATCH /payments/:id/participants/:uid — Flip the is_paid flag.
    Informational only: balances are derived from shares, never from is_paid.
    """
    data = PatchParticipantSchema().load(request.get_json(force=True) or {})
    participant = payment_service.update_payment_participant(
        payment_id=payment_id,
        user_id=user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_participant(participant), "warnings": []}), 200
