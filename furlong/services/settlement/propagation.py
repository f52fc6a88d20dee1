"""Finishing-position propagation.

Once a race's runners are stored, each horse's finishing position is copied
into the tables that denormalize it: race entries, user selections and the
shortlist.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from furlong.models.records import RaceRunner
from furlong.services.store.base import PROPAGATION_TABLES, SettlementStore

logger = structlog.get_logger(__name__)


@dataclass
class PropagationSummary:
    """Per-table counts from one propagation pass."""

    race_id: str
    runners: int = 0
    updated: dict[str, int] = field(default_factory=dict)
    failed: dict[str, int] = field(default_factory=dict)

    @property
    def failed_tables(self) -> list[str]:
        return [table for table, count in self.failed.items() if count]

    @property
    def entries_ok(self) -> bool:
        """True when every race_entries write succeeded."""
        return not self.failed.get("race_entries")

    def to_dict(self) -> dict[str, object]:
        return {
            "runners": self.runners,
            "updated": dict(self.updated),
            "failed": dict(self.failed),
        }


class ResultPropagator:
    """
    Writes finishing positions into every derived table.

    Tables are written concurrently and independently. Within a table each
    horse is a separate conditional patch, so a failure is confined to that
    one row and a rerun only touches rows that still differ.
    """

    def __init__(
        self,
        store: SettlementStore,
        tables: tuple[str, ...] = PROPAGATION_TABLES,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.tables = tables
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def propagate(self, race_id: str, runners: list[RaceRunner]) -> PropagationSummary:
        """Copy positions for every placed runner with a horse id."""
        placed = [r for r in runners if r.position is not None and r.horse_id]
        summary = PropagationSummary(race_id=race_id, runners=len(placed))
        if not placed:
            logger.info("propagation_skipped_no_placed_runners", race_id=race_id)
            return summary

        updated_at = self._now()
        outcomes = await asyncio.gather(
            *(self._update_table(table, race_id, placed, updated_at) for table in self.tables),
            return_exceptions=True,
        )

        for table, outcome in zip(self.tables, outcomes):
            if isinstance(outcome, BaseException):
                # Anything escaping _update_table fails the whole table
                logger.error(
                    "propagation_table_failed",
                    race_id=race_id,
                    table=table,
                    error=str(outcome),
                )
                summary.updated[table] = 0
                summary.failed[table] = len(placed)
                continue
            summary.updated[table], summary.failed[table] = outcome

        logger.info(
            "propagation_complete",
            race_id=race_id,
            runners=summary.runners,
            updated=summary.updated,
            failed_tables=summary.failed_tables,
        )
        return summary

    async def _update_table(
        self,
        table: str,
        race_id: str,
        runners: list[RaceRunner],
        updated_at: datetime,
    ) -> tuple[int, int]:
        updated = 0
        failed = 0
        for runner in runners:
            try:
                updated += await self.store.set_finishing_position(
                    table,
                    race_id,
                    runner.horse_id,
                    runner.position,
                    updated_at,
                )
            except Exception as e:
                failed += 1
                logger.warning(
                    "propagation_row_failed",
                    race_id=race_id,
                    table=table,
                    horse_id=runner.horse_id,
                    error=str(e),
                )
        return updated, failed
