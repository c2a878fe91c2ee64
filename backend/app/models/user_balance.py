"""
models/user_balance.py — UserBalance table definition.

No business logic. No imports from services or routes.

A UserBalance row is a derived cache, not a source of truth: it is the last
snapshot computed by balance_service.recalculate_group_balances() for one
(user, group) pair. Nothing else writes it. Rows are overwritten in place on
every recalculation and removed when the user stops being an active member.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class UserBalance(db.Model):
    __tablename__ = "user_balances"

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_user_balances_user_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    total_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    total_owed: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # total_paid - total_owed. Positive: others owe this user.
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="balances",
    )

    user: Mapped["User"] = relationship("User")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<UserBalance user_id={self.user_id} "
            f"group_id={self.group_id} "
            f"balance={self.balance}>"
        )
