"""
tests/unit/test_validation_schemas.py — Unit tests for all marshmallow schemas.

What this file proves:
  - Every schema accepts valid input without raising
  - Every schema rejects invalid input with the correct ValidationError
  - Field-level rules (type, length, enum, decimal precision) are enforced by schemas
  - Cross-entity rules (membership, share sums) are NOT tested here — they belong
    in services
  - Error codes raised match the registered constants in errors.py

Unit test constraints:
  - No database. No Flask application context.
    Schemas inherit from marshmallow.Schema directly (not ma.Schema) — this is
    precisely why they can be instantiated without an app context.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from marshmallow import ValidationError

from backend.app.errors import ErrorCode
from backend.app.models.membership import MemberRole
from backend.app.models.payment import Category, SplitMode
from backend.app.schemas.group_schema import (
    AddMemberSchema,
    CreateGroupSchema,
    PatchGroupSchema,
)
from backend.app.schemas.payment_schema import (
    CreatePaymentSchema,
    ParticipantInputSchema,
    PatchParticipantSchema,
    PatchPaymentSchema,
)
from backend.app.schemas.user_schema import CreateUserSchema, PatchUserSchema


def _messages_for(exc_info, field: str) -> list:
    messages = exc_info.value.messages[field]
    return messages if isinstance(messages, list) else [messages]


# ═══════════════════════════════════════════════════════════════════════════
# User schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateUserSchema:

    def _load(self, data: dict):
        return CreateUserSchema().load(data)

    def test_valid_payload(self):
        result = self._load({"name": "Alice", "email": "alice@example.com"})
        assert result["name"] == "Alice"
        assert result["avatar"] is None

    def test_rejects_invalid_email(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "Alice", "email": "not-an-email"})
        assert "email" in exc_info.value.messages

    def test_rejects_blank_name(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "   ", "email": "alice@example.com"})
        assert "name" in exc_info.value.messages

    def test_requires_email(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "Alice"})
        assert _messages_for(exc_info, "email")[0].startswith("Missing data for required field")


class TestPatchUserSchema:

    def test_all_fields_optional(self):
        assert PatchUserSchema().load({}) == {}

    def test_avatar_can_be_cleared(self):
        assert PatchUserSchema().load({"avatar": None}) == {"avatar": None}


# ═══════════════════════════════════════════════════════════════════════════
# Group schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateGroupSchema:

    def _load(self, data: dict):
        return CreateGroupSchema().load(data)

    def test_valid_payload_with_defaults(self):
        result = self._load({"name": "Trip", "created_by": 1})
        assert result["currency"] == "USD"
        assert result["member_ids"] == []
        assert result["description"] is None

    def test_accepts_supported_currency(self):
        result = self._load({"name": "Trip", "created_by": 1, "currency": "EUR"})
        assert result["currency"] == "EUR"

    def test_rejects_unsupported_currency(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "Trip", "created_by": 1, "currency": "XYZ"})
        assert _messages_for(exc_info, "currency") == [ErrorCode.INVALID_CURRENCY]

    def test_rejects_whitespace_name(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "   ", "created_by": 1})
        assert "name" in exc_info.value.messages

    def test_rejects_name_over_100_chars(self):
        with pytest.raises(ValidationError):
            self._load({"name": "x" * 101, "created_by": 1})

    def test_rejects_float_creator(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "Trip", "created_by": 1.5})
        assert "created_by" in exc_info.value.messages

    def test_member_ids_must_be_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"name": "Trip", "created_by": 1, "member_ids": [2, 0]})
        assert "member_ids" in exc_info.value.messages


class TestPatchGroupSchema:

    def test_partial_payload(self):
        assert PatchGroupSchema().load({"description": "Summer"}) == {"description": "Summer"}

    def test_rejects_unsupported_currency(self):
        with pytest.raises(ValidationError) as exc_info:
            PatchGroupSchema().load({"currency": "usd"})
        assert _messages_for(exc_info, "currency") == [ErrorCode.INVALID_CURRENCY]


class TestAddMemberSchema:

    def test_defaults_to_member_role(self):
        result = AddMemberSchema().load({"user_id": 4})
        assert result == {"user_id": 4, "role": MemberRole.MEMBER}

    def test_accepts_admin_role(self):
        result = AddMemberSchema().load({"user_id": 4, "role": "admin"})
        assert result["role"] == MemberRole.ADMIN

    def test_rejects_unknown_role(self):
        with pytest.raises(ValidationError) as exc_info:
            AddMemberSchema().load({"user_id": 4, "role": "owner"})
        assert _messages_for(exc_info, "role") == [ErrorCode.INVALID_ROLE]

    def test_rejects_zero_user_id(self):
        with pytest.raises(ValidationError):
            AddMemberSchema().load({"user_id": 0})


# ═══════════════════════════════════════════════════════════════════════════
# Payment schemas
# ═══════════════════════════════════════════════════════════════════════════

def _custom_payload(**overrides) -> dict:
    payload = {
        "paid_by": 1,
        "amount": "120.00",
        "description": "Dinner",
        "participants": [
            {"user_id": 1, "share": "40.00"},
            {"user_id": 2, "share": "40.00"},
            {"user_id": 3, "share": "40.00"},
        ],
    }
    payload.update(overrides)
    return payload


class TestParticipantInputSchema:

    def test_share_is_optional(self):
        assert ParticipantInputSchema().load({"user_id": 2}) == {"user_id": 2, "share": None}

    def test_share_is_decimal(self):
        result = ParticipantInputSchema().load({"user_id": 2, "share": "28.50"})
        assert result["share"] == Decimal("28.50")
        assert isinstance(result["share"], Decimal)

    def test_rejects_three_decimal_places(self):
        with pytest.raises(ValidationError) as exc_info:
            ParticipantInputSchema().load({"user_id": 2, "share": "1.005"})
        assert _messages_for(exc_info, "share") == [ErrorCode.INVALID_AMOUNT_PRECISION]

    def test_rejects_zero_share(self):
        with pytest.raises(ValidationError):
            ParticipantInputSchema().load({"user_id": 2, "share": "0"})


class TestCreatePaymentSchema:

    def _load(self, data: dict):
        return CreatePaymentSchema().load(data)

    def test_valid_custom_payload_with_defaults(self):
        result = self._load(_custom_payload())
        assert result["amount"] == Decimal("120.00")
        assert result["split_mode"] == SplitMode.CUSTOM
        assert result["category"] == Category.OTHER
        assert result["date"] is None
        assert len(result["participants"]) == 3

    def test_valid_equal_payload_without_participants(self):
        result = self._load({
            "paid_by": 1,
            "amount": "45.00",
            "description": "Taxi",
            "split_mode": "equal",
            "category": "transport",
        })
        assert result["split_mode"] == SplitMode.EQUAL
        assert result["participants"] is None

    def test_accepts_iso_date(self):
        result = self._load(_custom_payload(date="2026-03-01T19:30:00"))
        assert result["date"].year == 2026

    def test_rejects_amount_precision(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(amount="10.999"))
        assert _messages_for(exc_info, "amount") == [ErrorCode.INVALID_AMOUNT_PRECISION]

    def test_rejects_negative_amount(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(amount="-5.00"))
        assert "amount" in exc_info.value.messages

    def test_rejects_unknown_category(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(category="accommodation"))
        assert _messages_for(exc_info, "category") == [ErrorCode.INVALID_CATEGORY]

    def test_rejects_unknown_split_mode(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(split_mode="percent"))
        assert _messages_for(exc_info, "split_mode") == [ErrorCode.INVALID_SPLIT_MODE]

    def test_rejects_blank_description(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(description="  "))
        assert "description" in exc_info.value.messages

    def test_custom_mode_requires_participants(self):
        payload = _custom_payload()
        del payload["participants"]
        with pytest.raises(ValidationError) as exc_info:
            self._load(payload)
        assert "participants" in exc_info.value.messages

    def test_custom_mode_requires_every_share(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(participants=[
                {"user_id": 1, "share": "60.00"},
                {"user_id": 2},
            ]))
        assert "participants" in exc_info.value.messages

    def test_equal_mode_rejects_shares(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(split_mode="equal"))
        assert _messages_for(exc_info, "participants") == [ErrorCode.SHARES_SENT_FOR_EQUAL_MODE]

    def test_rejects_duplicate_participants(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load(_custom_payload(participants=[
                {"user_id": 1, "share": "60.00"},
                {"user_id": 1, "share": "60.00"},
            ]))
        assert _messages_for(exc_info, "participants") == [ErrorCode.DUPLICATE_PARTICIPANT]

    def test_share_sum_is_not_checked_here(self):
        # The 0.01 tolerance rule needs the service; the schema accepts the shape.
        result = self._load(_custom_payload(amount="500.00"))
        assert result["amount"] == Decimal("500.00")


class TestPatchPaymentSchema:

    def _load(self, data: dict):
        return PatchPaymentSchema().load(data)

    def test_empty_patch_is_valid(self):
        assert self._load({}) == {}

    def test_amount_alone_is_accepted(self):
        assert self._load({"amount": "80.00"}) == {"amount": Decimal("80.00")}

    def test_switch_to_equal_rejects_shares(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({
                "split_mode": "equal",
                "participants": [{"user_id": 1, "share": "5.00"}],
            })
        assert _messages_for(exc_info, "participants") == [ErrorCode.SHARES_SENT_FOR_EQUAL_MODE]

    def test_switch_to_custom_requires_shares(self):
        with pytest.raises(ValidationError):
            self._load({
                "split_mode": "custom",
                "participants": [{"user_id": 1}],
            })

    def test_switch_to_custom_requires_participants(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"split_mode": "custom"})
        assert "participants" in exc_info.value.messages

    def test_rejects_empty_participant_list(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"participants": []})
        assert "participants" in exc_info.value.messages

    def test_rejects_duplicate_participants(self):
        with pytest.raises(ValidationError) as exc_info:
            self._load({"participants": [{"user_id": 3}, {"user_id": 3}]})
        assert _messages_for(exc_info, "participants") == [ErrorCode.DUPLICATE_PARTICIPANT]


class TestPatchParticipantSchema:

    def test_requires_is_paid(self):
        with pytest.raises(ValidationError):
            PatchParticipantSchema().load({})

    def test_loads_boolean(self):
        assert PatchParticipantSchema().load({"is_paid": True}) == {"is_paid": True}
