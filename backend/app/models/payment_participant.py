"""
models/payment_participant.py — PaymentParticipant table definition.

No business logic. No imports from services or routes.

Key design points:
  - One row per user sharing in a Payment; `share` is that user's portion.
  - `share` uses Numeric(12, 2) — never Float.
  - payment_id is ON DELETE CASCADE — participants are owned by their payment.
  - UNIQUE(payment_id, user_id) prevents the same user appearing twice in
    one payment (also rejected as DUPLICATE_PARTICIPANT by the schema).
  - `is_paid` tracks whether the participant has handed over their share.
    It is informational and never enters balance computation.

sum(shares) == payment.amount is enforced in payment_service.py, not here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class PaymentParticipant(db.Model):
    __tablename__ = "payment_participants"

    __table_args__ = (
        UniqueConstraint("payment_id", "user_id", name="uq_payment_participants_payment_user"),
        CheckConstraint("share > 0", name="ck_payment_participants_share_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    share: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    payment: Mapped["Payment"] = relationship(  # noqa: F821
        "Payment",
        back_populates="participants",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="participations",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PaymentParticipant id={self.id} "
            f"payment_id={self.payment_id} "
            f"user_id={self.user_id} "
            f"share={self.share}>"
        )
