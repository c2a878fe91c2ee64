"""
services/payment_service.py — Payment and participant business logic.

This is the validation boundary in front of the balance engine. Inconsistent
data is rejected here, before any write, so aggregation never sees it:

  PAYER_NOT_MEMBER (422)        — paid_by must be an active group member
  PARTICIPANT_NOT_MEMBER (422)  — every participant must be an active member
  SHARE_SUM_MISMATCH (422)      — |sum(shares) - amount| must be <= 0.01
  AMOUNT_TOO_SMALL_FOR_SPLIT (422) — an equal split would leave a share below 0.01

Share reconciliation:
  A difference within the 0.01 tolerance is absorbed into the payer's share
  (or the first participant's when the payer does not participate), so the
  stored shares always sum to the amount exactly and balances stay conserved.

Equal split:
  amount / n rounded down to the cent for every participant; the remainder
  goes to the payer's share (first participant as fallback).

Every write ends with balance_service.recalculate_group_balances() in the
same session, so a payment and the balances derived from it commit together.

Layer rules:
  - No Flask imports. Receives plain ints and dicts; returns ORM objects or
    raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.group import Group
from backend.app.models.membership import Membership
from backend.app.models.payment import Category, Payment, SplitMode
from backend.app.models.payment_participant import PaymentParticipant
from backend.app.services import balance_service

logger = logging.getLogger(__name__)

SHARE_SUM_TOLERANCE = Decimal("0.01")


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


def _get_payment_or_404(payment_id: int, session: Session) -> Payment:
    """Returns the Payment or raises PAYMENT_NOT_FOUND (404)."""
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise AppError(
            ErrorCode.PAYMENT_NOT_FOUND,
            f"Payment {payment_id} does not exist.",
            404,
        )
    return payment


def _get_active_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all active members of a group."""
    stmt = (
        select(Membership.user_id)
        .where(
            Membership.group_id == group_id,
            Membership.is_active.is_(True),
        )
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _validate_payer_is_member(
        paid_by: int,
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises PAYER_NOT_MEMBER (422) if paid_by is not an active member."""
    if paid_by not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by} is not an active member of group {group_id}.",
            422,
            field="paid_by",
        )


def _validate_participants_are_members(
        participants: list[dict],
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises PARTICIPANT_NOT_MEMBER (422) for the first participant not in the group."""
    member_set = set(member_ids)
    for participant in participants:
        if participant["user_id"] not in member_set:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {participant['user_id']} is not an active member of group {group_id}.",
                422,
                field="participants",
            )


def _remainder_target(shares: list[dict], payer_id: int) -> dict:
    """The share that absorbs rounding remainders: the payer's, else the first."""
    return next(
        (s for s in shares if s["user_id"] == payer_id),
        shares[0],
    )


def _reconcile_shares(
        participants: list[dict],
        amount: Decimal,
        payer_id: int,
) -> list[dict]:
    """
    Validates client-supplied shares against the payment amount.

    Raises SHARE_SUM_MISMATCH (422) when the shares differ from the amount by
    more than SHARE_SUM_TOLERANCE. Otherwise returns a copy whose shares sum to
    the amount exactly, with any sub-tolerance difference moved onto the
    payer's share (first participant as fallback).
    """
    shares = [{"user_id": p["user_id"], "share": p["share"]} for p in participants]
    total = sum((s["share"] for s in shares), Decimal("0.00"))
    difference = amount - total

    if abs(difference) > SHARE_SUM_TOLERANCE:
        raise AppError(
            ErrorCode.SHARE_SUM_MISMATCH,
            f"Participant shares ({total}) do not equal the payment amount ({amount}).",
            422,
            field="participants",
        )

    if difference != Decimal("0"):
        target = _remainder_target(shares, payer_id)
        target["share"] += difference
        if target["share"] <= Decimal("0"):
            raise AppError(
                ErrorCode.SHARE_SUM_MISMATCH,
                f"Participant shares ({total}) cannot be reconciled with "
                f"the payment amount ({amount}).",
                422,
                field="participants",
            )

    return shares


def _compute_equal_shares(
        amount: Decimal,
        participant_ids: list[int],
        payer_id: int,
) -> list[dict]:
    """
    Canonical equal split computation.

    Divides amount evenly among all participants using ROUND_DOWN.
    The remainder is added to the payer's share (first participant when the
    payer does not participate).
    Guarantees: sum(result shares) == amount.
    Raises AMOUNT_TOO_SMALL_FOR_SPLIT (422) when amount / n rounds down to 0.00.

    Returns:
        List of {"user_id": int, "share": Decimal} dicts.
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)

    # Every stored share must be at least one cent.
    if base <= Decimal("0"):
        raise AppError(
            ErrorCode.AMOUNT_TOO_SMALL_FOR_SPLIT,
            f"Amount {amount} is too small to split equally among {n} participants.",
            422,
            field="amount",
        )

    remainder = amount - (base * n)

    shares = [{"user_id": uid, "share": base} for uid in participant_ids]

    if remainder > Decimal("0"):
        _remainder_target(shares, payer_id)["share"] += remainder

    # Must always hold; a failure here is a programming error.
    computed_sum = sum(s["share"] for s in shares)
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}.",
            500,
        )

    return shares


def _resolve_shares(
        split_mode: SplitMode,
        amount: Decimal,
        participants: list[dict] | None,
        payer_id: int,
        group_id: int,
        member_ids: list[int],
) -> list[dict]:
    """
    Produces the final {user_id, share} list for a payment write.

    Equal mode: participants (shares omitted) default to every active member.
    Custom mode: participants must carry shares; they are reconciled against
    the amount.
    """
    if split_mode == SplitMode.EQUAL:
        if participants is None:
            participant_ids = list(member_ids)
        else:
            if any(p.get("share") is not None for p in participants):
                raise AppError(
                    ErrorCode.SHARES_SENT_FOR_EQUAL_MODE,
                    "Do not send participant shares when split_mode is 'equal'.",
                    400,
                    field="participants",
                )
            _validate_participants_are_members(participants, group_id, member_ids)
            participant_ids = [p["user_id"] for p in participants]
        if not participant_ids:
            raise AppError(
                ErrorCode.MISSING_FIELD,
                "An equal split needs at least one participant.",
                400,
                field="participants",
            )
        return _compute_equal_shares(amount, participant_ids, payer_id)

    if not participants or any(p.get("share") is None for p in participants):
        raise AppError(
            ErrorCode.MISSING_FIELD,
            "Every participant needs a share when split_mode is 'custom'.",
            400,
            field="participants",
        )
    _validate_participants_are_members(participants, group_id, member_ids)
    return _reconcile_shares(participants, amount, payer_id)


def _delete_participants(payment: Payment, session: Session) -> None:
    """Removes all participant rows of a payment before they are re-created."""
    for participant in list(payment.participants):
        session.delete(participant)
    session.flush()
    session.expire(payment, ["participants"])


def _create_participant_rows(
        payment: Payment,
        shares: list[dict],
        session: Session,
        previously_paid: dict[int, bool] | None = None,
) -> None:
    """
    Creates PaymentParticipant rows from {user_id, share} dicts.

    The payer's own row is always marked paid. Other users keep the is_paid
    flag they had before the rewrite, if any.
    """
    previously_paid = previously_paid or {}
    for s in shares:
        participant = PaymentParticipant(
            payment_id=payment.id,
            user_id=s["user_id"],
            share=s["share"],
            is_paid=(s["user_id"] == payment.paid_by) or previously_paid.get(s["user_id"], False),
        )
        session.add(participant)
    session.flush()


# ── Public service functions ───────────────────────────────────────────────

def create_payment(group_id: int, data: dict, session: Session) -> Payment:
    """
    Records a new payment for a group and recomputes the group's balances.

    Args:
        group_id: The group this payment belongs to.
        data:     Validated dict from CreatePaymentSchema.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)
        AppError(PAYER_NOT_MEMBER, 422)
        AppError(PARTICIPANT_NOT_MEMBER, 422)
        AppError(SHARE_SUM_MISMATCH, 422)
        AppError(AMOUNT_TOO_SMALL_FOR_SPLIT, 422)

    Returns:
        The newly created Payment ORM object (with participants loaded).
    """
    _get_group_or_404(group_id, session)

    paid_by: int = data["paid_by"]
    amount: Decimal = data["amount"]
    split_mode: SplitMode = data.get("split_mode") or SplitMode.CUSTOM

    member_ids = _get_active_member_ids(group_id, session)
    _validate_payer_is_member(paid_by, group_id, member_ids)

    # Resolve shares before writing anything.
    shares = _resolve_shares(
        split_mode,
        amount,
        data.get("participants"),
        paid_by,
        group_id,
        member_ids,
    )

    payment = Payment(
        group_id=group_id,
        paid_by=paid_by,
        amount=amount,
        description=data["description"],
        category=data.get("category") or Category.OTHER,
        split_mode=split_mode,
    )
    if data.get("date") is not None:
        payment.date = data["date"]
    session.add(payment)
    session.flush()  # populate payment.id before creating participants

    _create_participant_rows(payment, shares, session)

    balance_service.recalculate_group_balances(group_id, session)

    # Refresh to load the participants relationship for serialisation.
    session.refresh(payment)
    logger.info(
        "Created payment %s in group %s: %s paid by user %s across %d participants",
        payment.id,
        group_id,
        amount,
        paid_by,
        len(shares),
    )
    return payment


def list_payments(group_id: int, session: Session) -> list[Payment]:
    """Returns all payments of a group, newest first."""
    _get_group_or_404(group_id, session)

    stmt = (
        select(Payment)
        .where(Payment.group_id == group_id)
        .order_by(Payment.date.desc(), Payment.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def get_payment(payment_id: int, session: Session) -> Payment:
    """Returns a single payment including its participants."""
    return _get_payment_or_404(payment_id, session)


def update_payment(payment_id: int, data: dict, session: Session) -> Payment:
    """
    Partially updates a payment and recomputes the group's balances.

    Rules:
      - description, category and date are applied as given.
      - A new paid_by must be an active member (PAYER_NOT_MEMBER, 422).
      - If amount, participants, split_mode or paid_by is present, the shares
        are re-resolved before any write, using the stored value for anything
        the patch does not carry. Equal mode recomputes from scratch; custom
        mode re-validates the share sum (SHARE_SUM_MISMATCH, 422).
      - In custom mode a new amount needs new participant shares. Stored
        shares are never stretched over a different amount, not even within
        the 0.01 tolerance (SHARE_SUM_MISMATCH, 422).
      - updated_at is set on every successful update.

    Args:
        payment_id: The payment to edit.
        data:       Validated partial dict from PatchPaymentSchema.
    """
    payment = _get_payment_or_404(payment_id, session)
    group_id = payment.group_id
    member_ids = _get_active_member_ids(group_id, session)

    if "description" in data:
        payment.description = data["description"]

    if "category" in data:
        payment.category = data["category"]

    if "date" in data:
        payment.date = data["date"]

    if "paid_by" in data:
        _validate_payer_is_member(data["paid_by"], group_id, member_ids)

    reshare = any(key in data for key in ("amount", "participants", "split_mode", "paid_by"))

    if reshare:
        old_payer = payment.paid_by
        new_payer = data.get("paid_by", old_payer)
        split_mode = data.get("split_mode") or payment.split_mode
        amount = data.get("amount") or payment.amount

        participants = data.get("participants")
        if participants is None:
            if split_mode == SplitMode.EQUAL:
                participants = [{"user_id": p.user_id} for p in payment.participants]
            else:
                # Stored custom shares are reused as-is: no tolerance applies.
                if amount != payment.amount:
                    raise AppError(
                        ErrorCode.SHARE_SUM_MISMATCH,
                        f"Changing the amount of a custom split from {payment.amount} "
                        f"to {amount} requires new participant shares.",
                        422,
                        field="participants",
                    )
                participants = [
                    {"user_id": p.user_id, "share": p.share}
                    for p in payment.participants
                ]

        shares = _resolve_shares(
            split_mode,
            amount,
            participants,
            new_payer,
            group_id,
            member_ids,
        )

        # The old payer's automatic "paid" mark does not carry over.
        previously_paid = {
            p.user_id: p.is_paid
            for p in payment.participants
            if p.user_id != old_payer
        }

        payment.paid_by = new_payer
        payment.amount = amount
        payment.split_mode = split_mode

        _delete_participants(payment, session)
        _create_participant_rows(payment, shares, session, previously_paid)

    payment.updated_at = datetime.now(timezone.utc)
    session.flush()

    balance_service.recalculate_group_balances(group_id, session)

    session.refresh(payment)
    logger.info("Updated payment %s in group %s", payment_id, group_id)
    return payment


def delete_payment(payment_id: int, session: Session) -> None:
    """
    Hard-deletes a payment together with its participant rows and recomputes
    the group's balances.

    Raises:
        AppError(PAYMENT_NOT_FOUND, 404)
    """
    payment = _get_payment_or_404(payment_id, session)
    group_id = payment.group_id

    session.delete(payment)
    session.flush()

    balance_service.recalculate_group_balances(group_id, session)
    logger.info("Deleted payment %s from group %s", payment_id, group_id)


def get_payment_participants(payment_id: int, session: Session) -> list[PaymentParticipant]:
    """Returns the participant rows of a payment."""
    payment = _get_payment_or_404(payment_id, session)
    return list(payment.participants)


def update_payment_participant(
        payment_id: int,
        user_id: int,
        data: dict,
        session: Session,
) -> PaymentParticipant:
    """
    Updates the is_paid flag of one participant row.

    Shares are not editable here; they change through update_payment() so the
    share-sum check always runs. is_paid does not enter balance computation,
    so no recomputation is needed.

    Raises:
        AppError(PAYMENT_NOT_FOUND, 404)
        AppError(PARTICIPANT_NOT_FOUND, 404)
    """
    _get_payment_or_404(payment_id, session)

    participant = session.execute(
        select(PaymentParticipant).where(
            PaymentParticipant.payment_id == payment_id,
            PaymentParticipant.user_id == user_id,
        )
    ).scalar_one_or_none()

    if participant is None:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_FOUND,
            f"User {user_id} is not a participant of payment {payment_id}.",
            404,
        )

    if "is_paid" in data:
        participant.is_paid = data["is_paid"]
    session.flush()
    return participant
