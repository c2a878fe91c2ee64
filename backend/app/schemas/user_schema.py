"""
schemas/user_schema.py — Marshmallow schemas for user endpoints.

Validation responsibility:
  - This file: field types, lengths, email format.
  - services/user_service.py: DUPLICATE_EMAIL (cross-entity: requires a DB
    lookup — not a schema concern).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateUserSchema(Schema):
    """
    POST /users

    name   : 1–100 chars, not blank
    email  : valid email format, max 255 chars; stored lower-cased
    avatar : optional URL or path, max 500 chars
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # marshmallow's Email field applies RFC-5322-compatible validation.
    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    avatar = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500),
    )


class PatchUserSchema(Schema):
    """PATCH /users/:id — all fields optional."""

    name = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    email = fields.Email(
        required=False,
        validate=validate.Length(max=255),
    )

    avatar = fields.Str(
        required=False,
        allow_none=True,
        validate=validate.Length(max=500),
    )
