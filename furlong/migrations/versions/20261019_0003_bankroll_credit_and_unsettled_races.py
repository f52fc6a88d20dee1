"""Atomic bankroll credit and the unsettled-races view.

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-19

- apply_bankroll_credit(): inserts a ledger entry and, only if the
  reference was new, adds its amount to user_bankroll in the same
  transaction. Returns the updated balance row, or no rows on a replay.
- races_with_pending_bets: races with a stored result that still have
  pending bets
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0003"
down_revision: Union[str, None] = "0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION apply_bankroll_credit(
            p_reference text,
            p_user_id text,
            p_bet_id text,
            p_entry_type text,
            p_amount numeric
        )
        RETURNS SETOF user_bankroll
        LANGUAGE plpgsql
        AS $$
        BEGIN
            INSERT INTO bankroll_ledger (reference, user_id, bet_id, entry_type, amount)
            VALUES (p_reference, p_user_id, p_bet_id, p_entry_type, p_amount)
            ON CONFLICT (reference) DO NOTHING;

            IF NOT FOUND THEN
                RETURN;
            END IF;

            RETURN QUERY
            WITH credited AS (
                INSERT INTO user_bankroll (user_id, current_amount)
                VALUES (p_user_id, p_amount)
                ON CONFLICT (user_id) DO UPDATE
                SET current_amount = user_bankroll.current_amount + EXCLUDED.current_amount,
                    updated_at = now()
                RETURNING *
            )
            SELECT * FROM credited;
        END;
        $$
        """
    )

    op.execute(
        """
        CREATE OR REPLACE VIEW races_with_pending_bets AS
        SELECT r.*
        FROM races r
        WHERE EXISTS (SELECT 1 FROM race_results rr WHERE rr.race_id = r.race_id)
          AND EXISTS (
              SELECT 1 FROM bets b
              WHERE b.race_id = r.race_id AND b.status = 'pending'
          )
        """
    )


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS races_with_pending_bets")
    op.execute(
        "DROP FUNCTION IF EXISTS apply_bankroll_credit(text, text, text, text, numeric)"
    )
