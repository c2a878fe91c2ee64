"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig points at in-memory SQLite unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - On PostgreSQL the enum types (member_role_enum, split_mode_enum,
    category_enum) are created explicitly before db.create_all() because the
    models declare them with create_type=False (Alembic owns them).

Helper functions (not fixtures) are provided for common operations:
  - make_user(client, ...)     → user dict
  - make_group(client, ...)    → group dict
  - add_member(...)            → HTTP response
  - make_payment(...)          → HTTP response
  - get_balances(...)          → HTTP response
  - get_debts(...)             → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db


_PG_ENUMS = {
    "member_role_enum": "'admin', 'member'",
    "split_mode_enum": "'equal', 'custom'",
    "category_enum": (
        "'food', 'transport', 'entertainment', 'utilities', "
        "'rent', 'shopping', 'other'"
    ),
}


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig.
      2. On PostgreSQL, create the enum types the models expect to exist.
      3. Run db.create_all() to create all tables.
      4. Yield the app for the test session.
      5. Drop all tables at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        if _db.engine.dialect.name == "postgresql":
            with _db.engine.connect() as conn:
                for name, values in _PG_ENUMS.items():
                    conn.execute(text(
                        "DO $$ BEGIN "
                        f"CREATE TYPE {name} AS ENUM ({values}); "
                        "EXCEPTION WHEN duplicate_object THEN NULL; "
                        "END $$;"
                    ))
                conn.commit()

        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test in FK-safe order.

    Children first: participants and balances, then payments and memberships,
    then groups, then users.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM payment_participants"))
            conn.execute(text("DELETE FROM user_balances"))
            conn.execute(text("DELETE FROM payments"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_user(client, name: str = "alice", email: str | None = None) -> dict:
    """Creates a user and returns the user data dict."""
    if email is None:
        email = f"{name.lower()}@test.com"
    resp = client.post("/api/v1/users/", json={"name": name, "email": email})
    assert resp.status_code == 201, f"make_user failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_group(
    client,
    created_by: int,
    name: str = "Test Group",
    member_ids: list[int] | None = None,
    currency: str = "USD",
) -> dict:
    """
    Creates a group and returns the group data dict.
    The creator becomes the group admin and first member.
    """
    payload: dict = {"name": name, "created_by": created_by, "currency": currency}
    if member_ids is not None:
        payload["member_ids"] = member_ids
    resp = client.post("/api/v1/groups/", json=payload)
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, group_id: int, user_id: int, role: str | None = None):
    """Adds a user to a group. Returns the HTTP response."""
    payload: dict = {"user_id": user_id}
    if role is not None:
        payload["role"] = role
    return client.post(f"/api/v1/groups/{group_id}/members", json=payload)


def make_payment(
    client,
    group_id: int,
    paid_by: int,
    amount: str,
    participants: list[dict] | None = None,
    description: str = "Test Payment",
    split_mode: str = "custom",
    category: str = "other",
    date: str | None = None,
):
    """
    Creates a payment and returns the HTTP response.
    For split_mode='equal', pass participants without shares (or None for
    every member). For split_mode='custom', pass {user_id, share} dicts.
    """
    payload: dict = {
        "paid_by": paid_by,
        "description": description,
        "amount": amount,
        "split_mode": split_mode,
        "category": category,
    }
    if participants is not None:
        payload["participants"] = participants
    if date is not None:
        payload["date"] = date

    return client.post(f"/api/v1/groups/{group_id}/payments", json=payload)


def get_balances(client, group_id: int):
    return client.get(f"/api/v1/groups/{group_id}/balances")


def get_debts(client, group_id: int):
    return client.get(f"/api/v1/groups/{group_id}/debts")
