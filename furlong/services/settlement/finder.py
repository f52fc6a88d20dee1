"""Pending-race discovery.

A race is due for a result fetch once it has no stored result and its
off-time plus the settle delay has passed on the London clock. The
predicate is re-evaluated on every run, so races beyond the batch cap are
simply picked up next time.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from furlong.config.pipeline import PipelineConfig
from furlong.models.records import Race
from furlong.services.racetime import (
    LONDON_TZ,
    PM_HOUR_MAX,
    london_now,
    race_off_datetime,
    race_time_to_minutes,
)
from furlong.services.store.base import SettlementStore

logger = structlog.get_logger(__name__)


def is_settle_due(
    race: Race,
    now: datetime,
    settle_delay_minutes: int = 20,
    tz: str = LONDON_TZ,
    pm_hour_max: int = PM_HOUR_MAX,
) -> bool:
    """Whether the race's off-time plus the settle delay is at or before ``now``."""
    local_now = now.astimezone(ZoneInfo(tz))
    if race.date < local_now.date():
        return True
    if race.date > local_now.date():
        return False
    off = race_off_datetime(race.date, race.off_time, tz, pm_hour_max)
    return off + timedelta(minutes=settle_delay_minutes) <= local_now


class PendingRaceFinder:
    """Selects the next batch of races to fetch results for."""

    def __init__(self, store: SettlementStore, config: PipelineConfig):
        self.store = store
        self.config = config

    def sort_key(self, race: Race) -> tuple[date, int]:
        return race.date, race_time_to_minutes(race.off_time, self.config.pm_hour_max)

    def _window(self, now: datetime, target_date: date | None) -> tuple[date, date]:
        if target_date is not None:
            return target_date, target_date
        today = london_now(self.config.race_timezone, clock=lambda: now).date()
        return today - timedelta(days=self.config.pending_lookback_days), today

    async def find(
        self,
        now: datetime,
        limit: int | None = None,
        race_id: str | None = None,
        target_date: date | None = None,
    ) -> list[Race]:
        """
        Return up to ``limit`` due races in chronological order.

        Args:
            now: Current time (any timezone)
            limit: Requested batch size, clamped to the configured bounds
            race_id: Restrict to a single race
            target_date: Restrict to one race day

        Raises:
            StoreError: If the pending view cannot be read
        """
        cap = self.config.clamp_limit(limit)
        date_from, date_to = self._window(now, target_date)

        candidates = await self.store.list_pending_races(date_from, date_to, race_id=race_id)
        due = [
            race
            for race in candidates
            if is_settle_due(
                race,
                now,
                self.config.settle_delay_minutes,
                self.config.race_timezone,
                self.config.pm_hour_max,
            )
        ]
        due.sort(key=self.sort_key)
        batch = due[:cap]

        logger.info(
            "pending_races_found",
            candidates=len(candidates),
            due=len(due),
            batch=len(batch),
            limit=cap,
            race_id=race_id,
            target_date=target_date.isoformat() if target_date else None,
        )
        return batch

    async def find_unsettled(
        self,
        now: datetime,
        limit: int | None = None,
        race_id: str | None = None,
        target_date: date | None = None,
    ) -> list[Race]:
        """
        Races whose result is stored but whose bets are still pending.

        These are left behind when settlement failed after the provider
        saved the result; they no longer appear in the pending view.

        Raises:
            StoreError: If the unsettled view cannot be read
        """
        cap = self.config.clamp_limit(limit)
        date_from, date_to = self._window(now, target_date)

        races = await self.store.list_unsettled_races(date_from, date_to, race_id=race_id)
        races.sort(key=self.sort_key)
        batch = races[:cap]
        if batch:
            logger.info("unsettled_races_found", candidates=len(races), batch=len(batch))
        return batch
