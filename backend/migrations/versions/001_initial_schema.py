"""Initial schema — all tables, enums, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. PostgreSQL enum types (must exist before tables that reference them)
  2. Tables in FK dependency order (users → groups → memberships → payments
     → payment_participants, user_balances)
  3. Indexes

ON DELETE policies:
  groups.created_by                  → RESTRICT  (creator cannot be deleted)
  memberships.user_id                → RESTRICT
  memberships.group_id               → CASCADE   (owned by group)
  payments.group_id                  → CASCADE   (owned by group)
  payments.paid_by                   → RESTRICT
  payment_participants.payment_id    → CASCADE   (owned by payment)
  payment_participants.user_id       → RESTRICT
  user_balances.*                    → CASCADE   (derived cache)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration
branch_labels: tuple | None = None
depends_on: tuple | None = None


_CATEGORIES = (
    "food",
    "transport",
    "entertainment",
    "utilities",
    "rent",
    "shopping",
    "other",
)


def upgrade() -> None:
    """
    Apply the full initial schema.

    Enum types are created via op.execute() rather than SQLAlchemy's
    Enum(create_type=True); models use Enum(..., create_type=False) and expect
    the type to already exist before the ORM maps to it.
    """

    # ── Step 1: PostgreSQL enum types ─────────────────────────────────────

    op.execute("CREATE TYPE member_role_enum AS ENUM ('admin', 'member')")
    op.execute("CREATE TYPE split_mode_enum AS ENUM ('equal', 'custom')")
    op.execute(
        "CREATE TYPE category_enum AS ENUM ("
        + ", ".join(f"'{c}'" for c in _CATEGORIES)
        + ")"
    )

    # ── Step 2: users ──────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("avatar", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_users_name_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # ── Step 3: groups ─────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column(
            "currency",
            sa.String(3),
            nullable=False,
            server_default="USD",
        ),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_groups_creator"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── Step 4: memberships ────────────────────────────────────────────────
    # UNIQUE(user_id, group_id); removal flips is_active instead of deleting.

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "role",
            postgresql.ENUM("admin", "member", name="member_role_enum", create_type=False),
            nullable=False,
            server_default="member",
        ),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("TRUE"),
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )

    # ── Step 5: payments ───────────────────────────────────────────────────

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_payments_group"),
            nullable=False,
        ),
        sa.Column(
            "paid_by",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_payments_payer"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column(
            "category",
            postgresql.ENUM(*_CATEGORIES, name="category_enum", create_type=False),
            nullable=False,
            server_default="other",
        ),
        sa.Column(
            "split_mode",
            postgresql.ENUM("equal", "custom", name="split_mode_enum", create_type=False),
            nullable=False,
            server_default="custom",
        ),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_payments_description_nonempty",
        ),
    )

    # ── Step 6: payment_participants ───────────────────────────────────────

    op.create_table(
        "payment_participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "payment_id",
            sa.Integer(),
            sa.ForeignKey("payments.id", ondelete="CASCADE", name="fk_payment_participants_payment"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_payment_participants_user"),
            nullable=False,
        ),
        sa.Column("share", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "is_paid",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payment_participants"),
        sa.UniqueConstraint("payment_id", "user_id", name="uq_payment_participants_payment_user"),
        sa.CheckConstraint("share > 0", name="ck_payment_participants_share_positive"),
    )

    # ── Step 7: user_balances ──────────────────────────────────────────────
    # Derived cache, rewritten by balance_service.recalculate_group_balances().

    op.create_table(
        "user_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_user_balances_user"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_user_balances_group"),
            nullable=False,
        ),
        sa.Column("total_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_owed", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_user_balances"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_user_balances_user_group"),
    )

    # ── Step 8: Indexes ────────────────────────────────────────────────────
    # Names follow SQLAlchemy's ix_<table>_<column> for index=True columns.

    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_payments_group_id", "payments", ["group_id"])
    op.create_index("ix_payment_participants_payment_id", "payment_participants", ["payment_id"])
    op.create_index("ix_user_balances_group_id", "user_balances", ["group_id"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.
    Provided for local development resets only.
    """

    op.drop_index("ix_user_balances_group_id",          table_name="user_balances")
    op.drop_index("ix_payment_participants_payment_id", table_name="payment_participants")
    op.drop_index("ix_payments_group_id",               table_name="payments")
    op.drop_index("ix_memberships_group_id",            table_name="memberships")
    op.drop_index("ix_memberships_user_id",             table_name="memberships")

    op.drop_table("user_balances")
    op.drop_table("payment_participants")
    op.drop_table("payments")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS category_enum")
    op.execute("DROP TYPE IF EXISTS split_mode_enum")
    op.execute("DROP TYPE IF EXISTS member_role_enum")
