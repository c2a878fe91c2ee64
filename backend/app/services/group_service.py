"""
services/group_service.py — Group and membership business logic.

Membership rules:
  - The creator of a group becomes its first member, with the admin role.
  - Removing a member deactivates the membership (is_active = False); the row
    is kept. Adding the same user again reactivates it.
  - Only active members take part in balance computation, so every
    membership change recomputes the group's balances.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import MemberRole, Membership
from backend.app.models.user import User
from backend.app.services import balance_service
from backend.app.utils.currency import DEFAULT_CURRENCY

logger = logging.getLogger(__name__)

RECENT_PAYMENTS_LIMIT = 5


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


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


def _get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    """Returns the membership row (active or not) for (group, user), or None."""
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def _get_active_memberships(group_id: int, session: Session) -> list[Membership]:
    stmt = (
        select(Membership)
        .where(
            Membership.group_id == group_id,
            Membership.is_active.is_(True),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _add_membership(
        group_id: int,
        user_id: int,
        role: MemberRole,
        session: Session,
) -> Membership:
    """
    Creates or reactivates a membership.
    Raises ALREADY_MEMBER (409) if the user is already an active member.
    """
    membership = _get_membership(group_id, user_id, session)

    if membership is not None and membership.is_active:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {user_id} is already a member of group {group_id}.",
            409,
        )

    if membership is None:
        membership = Membership(
            user_id=user_id,
            group_id=group_id,
            role=role,
            is_active=True,
        )
        session.add(membership)
    else:
        membership.is_active = True
        membership.role = role

    session.flush()
    return membership


def _serialize_group(group: Group) -> dict:
    """Lightweight group dict (no member list)."""
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "currency": group.currency,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "updated_at": group.updated_at.isoformat() if group.updated_at else None,
    }


def _serialize_member(membership: Membership) -> dict:
    return {
        "id": membership.user.id,
        "name": membership.user.name,
        "email": membership.user.email,
        "role": membership.role.value,
        "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
    }


def _build_group_dict(group: Group, memberships: list[Membership]) -> dict:
    """Serialises a Group with its active member list to a plain dict."""
    return {
        **_serialize_group(group),
        "members": [_serialize_member(m) for m in memberships],
    }


# ── Public service functions ───────────────────────────────────────────────

def create_group(data: dict, session: Session) -> dict:
    """
    Creates a new group. The creator becomes an active admin member; any
    `member_ids` are added as regular members.

    Args:
        data: Validated dict from CreateGroupSchema.

    Raises:
        AppError(CREATOR_NOT_FOUND, 422) — created_by does not exist
        AppError(USER_NOT_FOUND, 404)    — a member_id does not exist
    """
    creator_id: int = data["created_by"]
    if session.get(User, creator_id) is None:
        raise AppError(
            ErrorCode.CREATOR_NOT_FOUND,
            f"User {creator_id} does not exist.",
            422,
            field="created_by",
        )

    group = Group(
        name=data["name"],
        description=data.get("description"),
        currency=data.get("currency") or DEFAULT_CURRENCY,
        created_by=creator_id,
    )
    session.add(group)
    session.flush()  # populate group.id before creating memberships

    _add_membership(group.id, creator_id, MemberRole.ADMIN, session)

    for member_id in dict.fromkeys(data.get("member_ids") or []):
        if member_id == creator_id:
            continue
        _get_user_or_404(member_id, session)
        _add_membership(group.id, member_id, MemberRole.MEMBER, session)

    balance_service.recalculate_group_balances(group.id, session)

    logger.info("Created group %s (%r) by user %s", group.id, group.name, creator_id)
    return _build_group_dict(group, _get_active_memberships(group.id, session))


def list_groups(session: Session) -> list[dict]:
    """Returns every group, oldest first, without member lists."""
    stmt = select(Group).order_by(Group.created_at.asc(), Group.id.asc())
    return [_serialize_group(g) for g in session.execute(stmt).scalars().all()]


def get_groups_for_user(user_id: int, session: Session) -> list[dict]:
    """
    Returns the groups in which the user has an active membership.

    Raises:
        AppError(USER_NOT_FOUND, 404)
    """
    _get_user_or_404(user_id, session)

    stmt = (
        select(Group)
        .join(Membership, Group.id == Membership.group_id)
        .where(
            Membership.user_id == user_id,
            Membership.is_active.is_(True),
        )
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    return [_serialize_group(g) for g in session.execute(stmt).scalars().all()]


def get_group(group_id: int, session: Session) -> dict:
    """Returns full group details including the active member list."""
    group = _get_group_or_404(group_id, session)
    return _build_group_dict(group, _get_active_memberships(group_id, session))


def update_group(group_id: int, data: dict, session: Session) -> dict:
    """Partially updates name, description and currency."""
    group = _get_group_or_404(group_id, session)

    for field in ("name", "description", "currency"):
        if field in data:
            setattr(group, field, data[field])

    group.updated_at = datetime.now(timezone.utc)
    session.flush()
    return _build_group_dict(group, _get_active_memberships(group_id, session))


def delete_group(group_id: int, session: Session) -> None:
    """
    Deletes a group with everything it owns: memberships, payments, payment
    participants and cached balances.
    """
    group = _get_group_or_404(group_id, session)
    session.delete(group)
    session.flush()
    logger.info("Deleted group %s", group_id)


def add_member(
        group_id: int,
        user_id: int,
        role: MemberRole,
        session: Session,
) -> dict:
    """
    Adds (or reactivates) a user in a group and recomputes balances.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)  — group does not exist
      AppError(USER_NOT_FOUND, 404)   — user does not exist
      AppError(ALREADY_MEMBER, 409)   — user is already an active member
    """
    _get_group_or_404(group_id, session)
    _get_user_or_404(user_id, session)

    membership = _add_membership(group_id, user_id, role, session)
    balance_service.recalculate_group_balances(group_id, session)

    return {"group_id": group_id, **_serialize_member(membership)}


def remove_member(group_id: int, user_id: int, session: Session) -> None:
    """
    Deactivates a membership and recomputes balances. The user's cached
    balance row for the group is dropped by the recomputation.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)   — group does not exist
      AppError(MEMBER_NOT_FOUND, 404)  — user is not an active member
    """
    _get_group_or_404(group_id, session)

    membership = _get_membership(group_id, user_id, session)
    if membership is None or not membership.is_active:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"User {user_id} is not a member of group {group_id}.",
            404,
        )

    membership.is_active = False
    session.flush()

    balance_service.recalculate_group_balances(group_id, session)


def get_group_summary(group_id: int, session: Session) -> dict:
    """
    Returns headline numbers for a group: total spent, payment and member
    counts, and the most recent payments.
    """
    group = _get_group_or_404(group_id, session)

    payments = balance_service.get_group_payments(group_id, session)
    total = sum((p.amount for p in payments), Decimal("0.00"))
    # get_group_payments orders by (date, id) ascending.
    recent = payments[::-1][:RECENT_PAYMENTS_LIMIT]

    return {
        "group": _serialize_group(group),
        "total_payments": str(total),
        "payment_count": len(payments),
        "member_count": len(balance_service.get_active_member_ids(group_id, session)),
        "recent_payments": [
            {
                "id": p.id,
                "paid_by": p.paid_by,
                "amount": str(p.amount),
                "description": p.description,
                "category": p.category.value,
                "date": p.date.isoformat(),
            }
            for p in recent
        ],
    }
