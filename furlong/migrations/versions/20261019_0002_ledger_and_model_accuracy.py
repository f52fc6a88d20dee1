"""Bankroll ledger, model accuracy tables and the pending-results view.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

- bankroll_ledger: append-only balance movements keyed by reference
- ml_model_race_results: each model's top pick per race
- ml_model_performance: per-model, per-day accuracy rebuilt from the picks
- races_pending_results: races that have no stored result yet
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bankroll_ledger",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("reference", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("bet_id", sa.Text(), nullable=True),
        sa.Column("entry_type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference", name="uq_bankroll_ledger_reference"),
        sa.CheckConstraint(
            "entry_type IN ('settlement')",
            name="ck_bankroll_ledger_entry_type",
        ),
    )
    op.create_index("idx_bankroll_ledger_user", "bankroll_ledger", ["user_id"])

    op.create_table(
        "ml_model_race_results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("race_id", sa.Text(), nullable=False),
        sa.Column("race_date", sa.Date(), nullable=False),
        sa.Column("horse_id", sa.Text(), nullable=False),
        sa.Column("horse_name", sa.Text(), nullable=False),
        sa.Column("model_name", sa.String(length=20), nullable=False),
        sa.Column("predicted_probability", sa.Numeric(5, 4), nullable=False),
        sa.Column("actual_position", sa.Integer(), nullable=False),
        sa.Column("is_winner", sa.Boolean(), nullable=False),
        sa.Column("is_top3", sa.Boolean(), nullable=False),
        # Only set for the ensemble model's predicted-winner flag
        sa.Column("prediction_correct", sa.Boolean(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "race_id", "horse_id", "model_name", name="uq_ml_model_race_results_pick"
        ),
    )
    op.create_index("idx_ml_model_race_results_date", "ml_model_race_results", ["race_date"])
    op.create_index(
        "idx_ml_model_race_results_created_at", "ml_model_race_results", ["created_at"]
    )

    op.create_table(
        "ml_model_performance",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("model_name", sa.String(length=20), nullable=False),
        sa.Column("analysis_date", sa.Date(), nullable=False),
        sa.Column("total_predictions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_winner_predictions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_top3_predictions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winner_accuracy_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("top3_accuracy_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("average_confidence_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("average_confidence_when_correct", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("average_confidence_when_incorrect", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("ensemble_winner_predictions_correct", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ensemble_winner_predictions_incorrect", sa.Integer(), nullable=False, server_default="0"),
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
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "model_name", "analysis_date", name="uq_ml_model_performance_model_day"
        ),
    )

    op.execute(
        """
        CREATE OR REPLACE VIEW races_pending_results AS
        SELECT r.*
        FROM races r
        LEFT JOIN race_results rr ON rr.race_id = r.race_id
        WHERE rr.race_id IS NULL
        """
    )


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS races_pending_results")
    op.drop_table("ml_model_performance")
    op.drop_table("ml_model_race_results")
    op.drop_table("bankroll_ledger")
