"""
services/balance_service.py — Balance aggregation and debt consolidation.

This file is the SINGLE SOURCE OF TRUTH for how balances and pairwise debts
are computed. Any change to how balances work must be made here.

Two independent computations read the same ledger snapshot:

  Balance Aggregator   recalculate_group_balances()
      per active member: total_paid, total_owed, balance = paid - owed,
      upserted into the UserBalance cache.

  Debt Consolidator    get_group_debt_breakdown()
      one directed edge per (participant -> payer) share, merged per ordered
      (from, to) pair. No bidirectional netting: A->B and B->A stay separate.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id (int) and session (SQLAlchemy Session) as arguments.
  - compute_user_totals() and consolidate_debts() are pure folds over plain
    rows and are fully unit-testable without a store.
  - Commits are the route's responsibility — only flush here.

Totality:
  - The engine never raises for missing data. An unknown group has no
    payments and no members, so it computes to an empty result.
  - Store failures propagate unchanged; there is no retry.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.payment_participant import PaymentParticipant
from backend.app.models.user import User
from backend.app.models.user_balance import UserBalance
from backend.app.utils.currency import format_amount

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")


# ── Data access helpers ────────────────────────────────────────────────────
# These are the ONLY sanctioned ways to read ledger data for balance purposes.

def get_group_payments(group_id: int, session: Session) -> list[Payment]:
    """Returns every payment of a group, oldest first (date, then id)."""
    stmt = (
        select(Payment)
        .where(Payment.group_id == group_id)
        .order_by(Payment.date.asc(), Payment.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_participants_for_payments(
        payment_ids: list[int],
        session: Session,
) -> list[PaymentParticipant]:
    """Returns the participant rows of the given payments, in insertion order."""
    if not payment_ids:
        return []
    stmt = (
        select(PaymentParticipant)
        .where(PaymentParticipant.payment_id.in_(payment_ids))
        .order_by(PaymentParticipant.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_active_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all active members of a group, in join order."""
    stmt = (
        select(Membership.user_id)
        .where(
            Membership.group_id == group_id,
            Membership.is_active.is_(True),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_active_members(group_id: int, session: Session) -> list[User]:
    """Returns full User objects for all active group members."""
    stmt = (
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(
            Membership.group_id == group_id,
            Membership.is_active.is_(True),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Core algorithms ────────────────────────────────────────────────────────

def compute_user_totals(
        payments: list,
        participants: list,
        member_ids: list[int],
) -> dict[int, dict[str, Decimal]]:
    """
    Canonical balance fold for one group.

    Returns {user_id: {"total_paid", "total_owed", "balance"}} for every id in
    member_ids, in member_ids order. Users outside member_ids are not reported.

    Algorithm:
      1. total_paid(u): sum of payment.amount where payment.paid_by == u.
      2. total_owed(u): sum of participant.share where participant.user_id == u,
         across every payment of the group, the user's own payments included
         (the payer is also a participant with a share).
      3. balance(u) = total_paid(u) - total_owed(u).

    Participant rows whose payment is not in `payments` are ignored.

    When every payer and participant is in member_ids and each payment's
    shares sum to its amount, sum(balance) == 0.
    """
    payment_ids = {p.id for p in payments}

    paid: dict[int, Decimal] = defaultdict(Decimal)
    owed: dict[int, Decimal] = defaultdict(Decimal)

    for payment in payments:
        paid[payment.paid_by] += payment.amount

    for participant in participants:
        if participant.payment_id not in payment_ids:
            continue
        owed[participant.user_id] += participant.share

    totals: dict[int, dict[str, Decimal]] = {}
    for member_id in member_ids:
        total_paid = paid.get(member_id, _ZERO) + _ZERO
        total_owed = owed.get(member_id, _ZERO) + _ZERO
        totals[member_id] = {
            "total_paid": total_paid,
            "total_owed": total_owed,
            "balance": total_paid - total_owed,
        }
    return totals


def consolidate_debts(payments: list, participants: list) -> list[dict]:
    """
    Pairwise debt consolidation for one group.

    Returns a list of
        {"from_user_id": int, "to_user_id": int, "amount": Decimal,
         "description": str}

    Algorithm:
      1. For every payment (in the given order) and every participant of that
         payment whose user_id != payment.paid_by, emit the edge
         participant.user_id -> payment.paid_by for participant.share.
      2. Merge edges with the same ordered (from, to) pair by summing amounts.

    Self-edges are filtered out, never emitted with a zero amount. Opposite
    directions are NOT netted against each other. Output is in first-seen-pair
    order. `description` lists the contributing payment descriptions,
    de-duplicated, in first-seen order.
    """
    by_payment: dict[int, list] = defaultdict(list)
    for participant in participants:
        by_payment[participant.payment_id].append(participant)

    # dict preserves insertion order → first-seen-pair order.
    edges: dict[tuple[int, int], dict] = {}

    for payment in payments:
        for participant in by_payment.get(payment.id, []):
            if participant.user_id == payment.paid_by:
                continue

            key = (participant.user_id, payment.paid_by)
            edge = edges.get(key)
            if edge is None:
                edge = {
                    "from_user_id": participant.user_id,
                    "to_user_id": payment.paid_by,
                    "amount": _ZERO,
                    "descriptions": [],
                }
                edges[key] = edge

            edge["amount"] += participant.share
            if payment.description not in edge["descriptions"]:
                edge["descriptions"].append(payment.description)

    return [
        {
            "from_user_id": edge["from_user_id"],
            "to_user_id": edge["to_user_id"],
            "amount": edge["amount"],
            "description": ", ".join(edge["descriptions"]),
        }
        for edge in edges.values()
    ]


# ── UserBalance cache ──────────────────────────────────────────────────────

def get_user_balances(session: Session) -> list[UserBalance]:
    """Returns every cached balance row across all groups."""
    stmt = select(UserBalance).order_by(UserBalance.group_id.asc(), UserBalance.id.asc())
    return list(session.execute(stmt).scalars().all())


def get_group_balances(group_id: int, session: Session) -> list[UserBalance]:
    """Returns the cached balance rows of one group."""
    stmt = (
        select(UserBalance)
        .where(UserBalance.group_id == group_id)
        .order_by(UserBalance.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_user_balance(
        user_id: int,
        group_id: int,
        session: Session,
) -> UserBalance | None:
    """Returns the cached balance row for (user, group), or None."""
    stmt = select(UserBalance).where(
        UserBalance.user_id == user_id,
        UserBalance.group_id == group_id,
    )
    return session.execute(stmt).scalar_one_or_none()


def update_user_balance(data: dict, session: Session) -> UserBalance:
    """
    Upserts one UserBalance row keyed by (user_id, group_id).

    Args:
        data: {"user_id", "group_id", "total_paid", "total_owed", "balance"}

    Overwrites the previous snapshot in place and stamps last_updated.
    """
    now = datetime.now(timezone.utc)
    row = get_user_balance(data["user_id"], data["group_id"], session)

    if row is None:
        row = UserBalance(
            user_id=data["user_id"],
            group_id=data["group_id"],
            total_paid=data["total_paid"],
            total_owed=data["total_owed"],
            balance=data["balance"],
            last_updated=now,
        )
        session.add(row)
    else:
        row.total_paid = data["total_paid"]
        row.total_owed = data["total_owed"]
        row.balance = data["balance"]
        row.last_updated = now

    return row


def _delete_stale_balances(
        group_id: int,
        member_ids: list[int],
        session: Session,
) -> int:
    """Deletes cached rows of users who are no longer active members."""
    stmt = select(UserBalance).where(
        UserBalance.group_id == group_id,
        UserBalance.user_id.not_in(member_ids),
    )
    stale = list(session.execute(stmt).scalars().all())
    for row in stale:
        session.delete(row)
    return len(stale)


# ── Engine entry points ────────────────────────────────────────────────────

def recalculate_group_balances(group_id: int, session: Session) -> list[UserBalance]:
    """
    Recomputes the group's balances from the full ledger snapshot and rewrites
    the UserBalance cache: one row per active member, nothing else.

    Called after every payment write and membership change, inside the same
    session, before the route commits.

    Returns the upserted rows in member join order. An unknown group or a group
    without active members yields [].
    """
    payments = get_group_payments(group_id, session)
    participants = get_participants_for_payments([p.id for p in payments], session)
    member_ids = get_active_member_ids(group_id, session)

    totals = compute_user_totals(payments, participants, member_ids)

    removed = _delete_stale_balances(group_id, member_ids, session)

    rows = [
        update_user_balance(
            {
                "user_id": user_id,
                "group_id": group_id,
                **values,
            },
            session,
        )
        for user_id, values in totals.items()
    ]
    session.flush()

    logger.info(
        "Recalculated balances for group %s: %d members, %d payments, %d stale rows removed",
        group_id,
        len(rows),
        len(payments),
        removed,
    )
    return rows


def get_group_debt_breakdown(group_id: int, session: Session) -> list[dict]:
    """
    Returns the consolidated pairwise debts of a group.
    See consolidate_debts() for the exact semantics. Unknown group → [].
    """
    payments = get_group_payments(group_id, session)
    participants = get_participants_for_payments([p.id for p in payments], session)
    return consolidate_debts(payments, participants)


# ── Response builders (used by routes/balances.py) ─────────────────────────

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


def _serialize_balance(row: UserBalance, name: str, currency: str) -> dict:
    return {
        "user_id": row.user_id,
        "name": name,
        "total_paid": str(row.total_paid),
        "total_owed": str(row.total_owed),
        "balance": str(row.balance),
        "display_balance": format_amount(row.balance, currency),
        "last_updated": row.last_updated.isoformat() if row.last_updated else None,
    }


def _build_balance_payload(group: Group, rows: list[UserBalance], session: Session) -> dict:
    member_map = {m.id: m.name for m in get_active_members(group.id, session)}

    balance_sum = sum((row.balance for row in rows), _ZERO)
    if balance_sum != _ZERO:
        # Expected only when a deactivated member still carries payments.
        logger.warning(
            "Group %s balances sum to %s instead of 0.00",
            group.id,
            balance_sum,
        )

    return {
        "group_id": group.id,
        "currency": group.currency,
        "balances": [
            _serialize_balance(row, member_map.get(row.user_id, f"user_{row.user_id}"), group.currency)
            for row in rows
        ],
        "balance_sum": str(balance_sum),
    }


def get_balance_response(group_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances from the cached rows.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
    """
    group = _get_group_or_404(group_id, session)
    return _build_balance_payload(group, get_group_balances(group_id, session), session)


def recalculate_balance_response(group_id: int, session: Session) -> dict:
    """
    Forces a recomputation and returns the fresh payload.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
    """
    group = _get_group_or_404(group_id, session)
    rows = recalculate_group_balances(group_id, session)
    return _build_balance_payload(group, rows, session)


def get_user_balance_response(group_id: int, user_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances/:uid.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)   — group does not exist.
        AppError(BALANCE_NOT_FOUND, 404) — no cached row (not an active member).
    """
    group = _get_group_or_404(group_id, session)
    row = get_user_balance(user_id, group_id, session)
    if row is None:
        raise AppError(
            ErrorCode.BALANCE_NOT_FOUND,
            f"No balance recorded for user {user_id} in group {group_id}.",
            404,
        )
    user = session.get(User, user_id)
    name = user.name if user is not None else f"user_{user_id}"
    return {"group_id": group_id, **_serialize_balance(row, name, group.currency)}


def get_debt_breakdown_response(group_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/debts.

    Raises:
        AppError(GROUP_NOT_FOUND, 404) — group does not exist.
    """
    group = _get_group_or_404(group_id, session)
    edges = get_group_debt_breakdown(group_id, session)

    user_ids = {e["from_user_id"] for e in edges} | {e["to_user_id"] for e in edges}
    names = {}
    if user_ids:
        users = session.execute(select(User).where(User.id.in_(user_ids))).scalars().all()
        names = {u.id: u.name for u in users}

    return {
        "group_id": group_id,
        "currency": group.currency,
        "debts": [
            {
                "from_user_id": e["from_user_id"],
                "from_name": names.get(e["from_user_id"], f"user_{e['from_user_id']}"),
                "to_user_id": e["to_user_id"],
                "to_name": names.get(e["to_user_id"], f"user_{e['to_user_id']}"),
                "amount": str(e["amount"]),
                "display_amount": format_amount(e["amount"], group.currency),
                "description": e["description"],
            }
            for e in edges
        ],
    }
