"""
services/user_service.py — User business logic.

Responsibilities:
  - User CRUD
  - Email uniqueness (stored lower-cased)
  - Refusing to delete a user still referenced by the ledger

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP knowledge beyond AppError status
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.payment_participant import PaymentParticipant
from backend.app.models.user import User

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_user_or_404(user_id: int, session: Session) -> User:
    """Returns the User or raises USER_NOT_FOUND (404)."""
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )
    return user


def _ensure_email_available(
        email: str,
        session: Session,
        exclude_user_id: int | None = None,
) -> None:
    """Raises DUPLICATE_EMAIL (409) if another user already owns `email`."""
    stmt = select(User.id).where(User.email == email)
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)

    if session.execute(stmt).first() is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )


def _is_referenced(user_id: int, session: Session) -> bool:
    """True if any membership, payment, share or group still points at the user."""
    stmt = select(
        or_(
            exists().where(Membership.user_id == user_id),
            exists().where(Payment.paid_by == user_id),
            exists().where(PaymentParticipant.user_id == user_id),
            exists().where(Group.created_by == user_id),
        )
    )
    return bool(session.execute(stmt).scalar())


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


# ── Public service functions ───────────────────────────────────────────────

def create_user(data: dict, session: Session) -> dict:
    """
    Creates a user.

    Args:
        data: Validated dict from CreateUserSchema: name, email, avatar?

    Raises:
      AppError(DUPLICATE_EMAIL, 409) — email already registered
    """
    email = data["email"].strip().lower()
    _ensure_email_available(email, session)

    user = User(
        name=data["name"],
        email=email,
        avatar=data.get("avatar"),
    )
    session.add(user)
    session.flush()

    logger.info("Created user %s", user.id)
    return _build_user_dict(user)


def list_users(session: Session) -> list[dict]:
    """Returns all users ordered by id."""
    users = session.execute(select(User).order_by(User.id.asc())).scalars().all()
    return [_build_user_dict(u) for u in users]


def get_user(user_id: int, session: Session) -> dict:
    return _build_user_dict(_get_user_or_404(user_id, session))


def update_user(user_id: int, data: dict, session: Session) -> dict:
    """
    Partially updates name, email and avatar.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(DUPLICATE_EMAIL, 409) — new email belongs to another user
    """
    user = _get_user_or_404(user_id, session)

    if "email" in data:
        email = data["email"].strip().lower()
        _ensure_email_available(email, session, exclude_user_id=user_id)
        user.email = email

    if "name" in data:
        user.name = data["name"]

    if "avatar" in data:
        user.avatar = data["avatar"]

    user.updated_at = datetime.now(timezone.utc)
    session.flush()
    return _build_user_dict(user)


def delete_user(user_id: int, session: Session) -> None:
    """
    Deletes a user who has no ledger history.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(USER_IN_USE, 409) — user belongs to, created, or has payments
                                   in some group
    """
    user = _get_user_or_404(user_id, session)

    if _is_referenced(user_id, session):
        raise AppError(
            ErrorCode.USER_IN_USE,
            f"User {user_id} still has group memberships or payments.",
            409,
        )

    session.delete(user)
    session.flush()
    logger.info("Deleted user %s", user_id)
