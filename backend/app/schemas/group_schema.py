"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    currency codes, membership roles.
  - services/group_service.py:
      - CREATOR_NOT_FOUND / USER_NOT_FOUND (existence checks require DB lookup)
      - ALREADY_MEMBER / MEMBER_NOT_FOUND  (membership lookups)
      - GROUP_NOT_FOUND

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate

from backend.app.errors import ErrorCode
from backend.app.models.membership import MemberRole
from backend.app.utils.currency import CURRENCIES, DEFAULT_CURRENCY


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_currency(value: str) -> None:
    if value not in CURRENCIES:
        raise ValidationError(ErrorCode.INVALID_CURRENCY)


_name_field_validators = [
    validate.Length(
        min=1,
        max=100,
        error="Group name must be between 1 and 100 characters.",
    ),
    _validate_non_empty_after_trim,
]


class CreateGroupSchema(Schema):
    """
    POST /groups

    name        : non-empty after trim, max 100 chars
    currency    : one of the supported ISO codes, default USD
    created_by  : user who becomes the group's admin
    member_ids  : optional extra members, added with the member role
    """

    name = fields.Str(required=True, validate=_name_field_validators)

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500),
    )

    currency = fields.Str(
        load_default=DEFAULT_CURRENCY,
        validate=_validate_currency,
    )

    created_by = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="created_by must be a positive integer."),
    )

    member_ids = fields.List(
        fields.Int(
            strict=True,
            validate=validate.Range(min=1, error="member_ids must hold positive integers."),
        ),
        load_default=list,
    )


class PatchGroupSchema(Schema):
    """PATCH /groups/:id — all fields optional."""

    name = fields.Str(required=False, validate=_name_field_validators)

    description = fields.Str(
        required=False,
        allow_none=True,
        validate=validate.Length(max=500),
    )

    currency = fields.Str(required=False, validate=_validate_currency)


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members

    Whether the user exists is a DB concern (USER_NOT_FOUND, 404) — checked
    in group_service.py.
    """

    user_id = fields.Int(
        required=True,
        strict=True,  # reject floats like 1.0
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )

    role = fields.Enum(
        MemberRole,
        load_default=MemberRole.MEMBER,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_ROLE},
    )
