"""
schemas/payment_schema.py — Marshmallow schemas for payment endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - SHARES_SENT_FOR_EQUAL_MODE (400) — request shape rule
      - DUPLICATE_PARTICIPANT      (400) — request shape rule
      - Shares required when split_mode='custom'
      - Non-empty-after-trim enforcement for description
  - services/payment_service.py:
      - SHARE_SUM_MISMATCH (422)     — requires Decimal arithmetic
      - PAYER_NOT_MEMBER (422)       — requires DB membership lookup
      - PARTICIPANT_NOT_MEMBER (422) — requires DB membership lookup

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.payment import Category, SplitMode


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal:
      - strictly greater than zero
      - at most 2 decimal places (rejected, never rounded)
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _check_participants(split_mode: SplitMode | None, participants: list[dict] | None) -> None:
    """
    Request-shape rules shared by create and patch.

    equal  → shares must be absent (the server computes them)
    custom → every participant must carry a share
    any    → no user_id may appear twice
    """
    if participants is None:
        return

    user_ids = [p["user_id"] for p in participants]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

    has_shares = [p.get("share") is not None for p in participants]

    if split_mode == SplitMode.EQUAL and any(has_shares):
        raise ValidationError({"participants": [ErrorCode.SHARES_SENT_FOR_EQUAL_MODE]})

    if split_mode == SplitMode.CUSTOM and not all(has_shares):
        raise ValidationError(
            {"participants": ["Every participant needs a share when split_mode is 'custom'."]}
        )


# ── Sub-schema: one entry in the `participants` array ─────────────────────

class ParticipantInputSchema(Schema):
    """
    One participant of a payment. `share` is omitted in equal mode.
    Group membership of user_id is checked in payment_service.py.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    share = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_monetary_amount,
    )


# ── Create payment ─────────────────────────────────────────────────────────

class CreatePaymentSchema(Schema):
    """
    POST /groups/:id/payments

    Split mode behaviour:
      - split_mode='custom' (default) → participants with shares required.
        The shares must sum to amount within 0.01 (payment_service.py).
      - split_mode='equal' → participants optional, without shares. When
        omitted, the payment is split among all active members.
    """

    paid_by = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="paid_by must be a positive integer."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    category = fields.Enum(
        Category,
        load_default=Category.OTHER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    # When the payment happened. Defaults to now (set by the model).
    date = fields.DateTime(load_default=None)

    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.CUSTOM,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_participants_coherence(self, data: dict, **kwargs) -> None:
        split_mode = data.get("split_mode", SplitMode.CUSTOM)
        participants = data.get("participants")

        if split_mode == SplitMode.CUSTOM and not participants:
            raise ValidationError(
                {"participants": ["participants is required when split_mode is 'custom'."]}
            )

        _check_participants(split_mode, participants)


# ── Patch payment ──────────────────────────────────────────────────────────

class PatchPaymentSchema(Schema):
    """
    PATCH /payments/:id

    All fields are optional. Changing amount, paid_by, split_mode or
    participants re-derives the shares in payment_service.py.

    Custom mode rules:
      - split_mode='custom' must come with the participants array.
      - Without participants the stored shares are reused unchanged, so a
        new amount is rejected (SHARE_SUM_MISMATCH, 422) unless new shares
        are sent with it.
    """

    paid_by = fields.Int(
        required=False,
        strict=True,
        validate=validate.Range(min=1, error="paid_by must be a positive integer."),
    )

    amount = fields.Decimal(
        required=False,
        validate=_validate_monetary_amount,
    )

    description = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    category = fields.Enum(
        Category,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CATEGORY},
    )

    date = fields.DateTime(required=False)

    split_mode = fields.Enum(
        SplitMode,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        required=False,
        validate=validate.Length(min=1, error="participants must not be empty."),
    )

    @validates_schema
    def validate_patch_coherence(self, data: dict, **kwargs) -> None:
        split_mode = data.get("split_mode")
        participants = data.get("participants")

        if split_mode == SplitMode.CUSTOM and participants is None:
            raise ValidationError(
                {"participants": ["participants is required when split_mode is 'custom'."]}
            )

        # Without an explicit split_mode the stored one applies; the service
        # enforces the share rules against it.
        _check_participants(split_mode, participants)


# ── Patch participant ──────────────────────────────────────────────────────

class PatchParticipantSchema(Schema):
    """
    PATCH /payments/:id/participants/:uid

    Only the is_paid flag can change. Shares are edited through the
    payment itself so that the share sum stays consistent.
    """

    is_paid = fields.Bool(required=True)
