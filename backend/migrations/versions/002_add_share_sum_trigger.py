"""Add share sum integrity trigger on payment_participants.

Revision: 002_add_share_sum_trigger

payment_service.py reconciles shares so that the stored shares of a payment
always add up to payments.amount exactly. This migration backs that rule in
PostgreSQL for writes that bypass the service layer.

A CHECK constraint cannot aggregate sibling rows against a parent column, so
the rule lives in an AFTER row-level trigger on payment_participants:

  Function : fn_check_share_sum()
    - Takes the affected payment_id from OLD (DELETE) or NEW (INSERT/UPDATE).
    - Compares SUM(share) of that payment's participants with payments.amount.
    - Raises SQLSTATE 23514 (check_violation) if they differ.
    - A payment that no longer exists (cascade delete) is skipped.

  Trigger  : trg_payment_participants_share_sum
    - CONSTRAINT TRIGGER, DEFERRABLE INITIALLY DEFERRED, so it fires at
      COMMIT. payment_service.py writes the payment row first and then each
      participant row; the intermediate sums are not expected to match.

SQLite test databases are built with db.create_all() and never run this.
"""

from __future__ import annotations

from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "002_add_share_sum_trigger"
down_revision: str | None = "001_initial_schema"
branch_labels: tuple | None = None
depends_on: tuple | None = None


_CREATE_FUNCTION = """
CREATE OR REPLACE FUNCTION fn_check_share_sum()
RETURNS TRIGGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_payment_id  INTEGER;
    v_share_sum   NUMERIC(12, 2);
    v_amount      NUMERIC(12, 2);
BEGIN
    IF TG_OP = 'DELETE' THEN
        v_payment_id := OLD.payment_id;
    ELSE
        v_payment_id := NEW.payment_id;
    END IF;

    SELECT amount
    INTO v_amount
    FROM payments
    WHERE id = v_payment_id;

    IF NOT FOUND THEN
        RETURN NULL;
    END IF;

    SELECT COALESCE(SUM(share), 0)
    INTO v_share_sum
    FROM payment_participants
    WHERE payment_id = v_payment_id;

    IF v_share_sum <> v_amount THEN
        RAISE EXCEPTION
            'share sum (%) does not equal payment amount (%) for payment id=%',
            v_share_sum, v_amount, v_payment_id
            USING ERRCODE = '23514';
    END IF;

    RETURN NULL;
END;
$$;
"""

_CREATE_TRIGGER = """
CREATE CONSTRAINT TRIGGER trg_payment_participants_share_sum
    AFTER INSERT OR UPDATE OR DELETE
    ON payment_participants
    DEFERRABLE INITIALLY DEFERRED
    FOR EACH ROW
    EXECUTE FUNCTION fn_check_share_sum();
"""

_DROP_TRIGGER = "DROP TRIGGER IF EXISTS trg_payment_participants_share_sum ON payment_participants;"
_DROP_FUNCTION = "DROP FUNCTION IF EXISTS fn_check_share_sum();"


def upgrade() -> None:
    """Creates the function first; the trigger references it."""
    op.execute(_CREATE_FUNCTION)
    op.execute(_CREATE_TRIGGER)


def downgrade() -> None:
    op.execute(_DROP_TRIGGER)
    op.execute(_DROP_FUNCTION)
