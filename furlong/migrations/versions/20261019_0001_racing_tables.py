"""Racing, wager and watch-list tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the tables the settlement pipeline reads and writes:
- races and race_entries (race cards with model probabilities)
- race_results and race_runners (written by the result provider)
- bets and user_bankroll
- selections and shortlist (user watch-lists annotated with positions)
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _result_columns() -> list[sa.Column]:
    return [
        sa.Column("finishing_position", sa.Integer(), nullable=True),
        sa.Column("result_updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # Races; off_time is the stored half-day HH:MM
    op.create_table(
        "races",
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("off_time", sa.String(length=8), nullable=True),
        sa.Column("course", sa.Text(), nullable=True),
        sa.Column("course_id", sa.Text(), nullable=True),
        sa.Column("race_name", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("race_id"),
    )
    op.create_index("idx_races_date_off_time", "races", ["date", "off_time"])

    # Race card entries with per-model win probabilities
    op.create_table(
        "race_entries",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("horse_id", sa.Text(), nullable=True),
        sa.Column("horse_name", sa.Text(), nullable=False),
        sa.Column("mlp_proba", sa.Numeric(6, 5), nullable=True),
        sa.Column("rf_proba", sa.Numeric(6, 5), nullable=True),
        sa.Column("xgboost_proba", sa.Numeric(6, 5), nullable=True),
        sa.Column("benter_proba", sa.Numeric(6, 5), nullable=True),
        sa.Column("ensemble_proba", sa.Numeric(6, 5), nullable=True),
        sa.Column("predicted_winner", sa.Boolean(), nullable=True),
        sa.Column("current_odds", sa.Text(), nullable=True),
        *_result_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["race_id"], ["races.race_id"]),
        sa.UniqueConstraint("race_id", "horse_id", name="uq_race_entries_race_horse"),
    )

    # Result summary, one per race
    op.create_table(
        "race_results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("region", sa.Text(), nullable=True),
        sa.Column("course", sa.Text(), nullable=False),
        sa.Column("course_id", sa.Text(), nullable=True),
        sa.Column("off", sa.Text(), nullable=True),
        sa.Column("off_dt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("race_name", sa.Text(), nullable=True),
        sa.Column("class", sa.Text(), nullable=True),
        sa.Column("dist", sa.Text(), nullable=True),
        sa.Column("going", sa.Text(), nullable=True),
        sa.Column("surface", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("race_id"),
    )
    op.create_index("idx_race_results_date", "race_results", ["date"])

    # Per-horse outcomes; position is NULL for non-finishers
    op.create_table(
        "race_runners",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("race_result_id", sa.Integer(), nullable=True),
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("horse_id", sa.Text(), nullable=False),
        sa.Column("horse", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("sp", sa.Text(), nullable=True),
        sa.Column("sp_dec", sa.Numeric(10, 2), nullable=True),
        sa.Column("jockey", sa.Text(), nullable=True),
        sa.Column("trainer", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["race_result_id"], ["race_results.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("race_id", "horse_id", name="uq_race_runners_race_horse"),
    )
    op.create_index("idx_race_runners_position", "race_runners", ["race_id", "position"])

    # Wagers
    op.create_table(
        "bets",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("horse_id", sa.Text(), nullable=True),
        sa.Column("horse_name", sa.Text(), nullable=True),
        sa.Column("bet_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("odds", sa.Numeric(10, 2), nullable=True),
        sa.Column("potential_return", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('pending', 'won', 'lost')", name="ck_bets_status"),
    )
    op.create_index(
        "idx_bets_pending_race",
        "bets",
        ["race_id"],
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Derived notional balance, one row per user
    op.create_table(
        "user_bankroll",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("current_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # Watch-lists
    for table in ("selections", "shortlist"):
        op.create_table(
            table,
            sa.Column("id", sa.BigInteger(), nullable=False),
            sa.Column("user_id", sa.Text(), nullable=False),
            sa.Column("race_id", sa.Text(), nullable=True),
            sa.Column("horse_id", sa.Text(), nullable=True),
            sa.Column("horse_name", sa.Text(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            *_result_columns(),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(f"idx_{table}_race_horse", table, ["race_id", "horse_id"])


def downgrade() -> None:
    op.drop_table("shortlist")
    op.drop_table("selections")
    op.drop_table("user_bankroll")
    op.drop_table("bets")
    op.drop_table("race_runners")
    op.drop_table("race_results")
    op.drop_table("race_entries")
    op.drop_table("races")
