"""
models/payment.py — Payment table definition.

No business logic. No imports from services or routes.

Key design points:
  - A Payment is one expense event: `paid_by` fronted `amount` for the group.
  - `amount` uses Numeric(12, 2) — never Float.
  - Payments are hard-deleted; their participant rows go with them.
  - SplitMode and Category are Python enums so they can be imported and used
    throughout the service layer without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitMode(str, enum.Enum):
    EQUAL  = "equal"
    CUSTOM = "custom"


class Category(str, enum.Enum):
    FOOD          = "food"
    TRANSPORT     = "transport"
    ENTERTAINMENT = "entertainment"
    UTILITIES     = "utilities"
    RENT          = "rent"
    SHOPPING      = "shopping"
    OTHER         = "other"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'custom'), not names ('CUSTOM')."""
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Model ──────────────────────────────────────────────────────────────────

class Payment(db.Model):
    __tablename__ = "payments"

    __table_args__ = (
        # Also enforced by the marshmallow schema.
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_payments_description_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    paid_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # NUMERIC(12, 2). Input with >2 decimal places is rejected by the schema
    # (INVALID_AMOUNT_PRECISION), not rounded.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    category: Mapped[Category] = mapped_column(
        Enum(
            Category,
            name="category_enum",
            create_type=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=Category.OTHER,
        server_default=Category.OTHER.value,
    )

    # Informational: how the shares were produced. Balances read shares only.
    split_mode: Mapped[SplitMode] = mapped_column(
        Enum(
            SplitMode,
            name="split_mode_enum",
            create_type=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitMode.CUSTOM,
        server_default=SplitMode.CUSTOM.value,
    )

    # When the expense happened (user-supplied); created_at is when it was logged.
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="payments",
    )

    payer: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="payments_paid",
        foreign_keys=[paid_by],
    )

    participants: Mapped[list["PaymentParticipant"]] = relationship(  # noqa: F821
        "PaymentParticipant",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentParticipant.id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Payment id={self.id} "
            f"group_id={self.group_id} "
            f"paid_by={self.paid_by} "
            f"amount={self.amount}>"
        )
