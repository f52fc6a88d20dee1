"""Settlement run orchestration.

One run finds the due races, asks the provider for each result in turn
under the throttle, and for every saved result propagates finishing
positions, settles bets and records model picks. The accuracy rows of
every race day touched by the run are rebuilt once at the end.

Runs hold no state between invocations. A race that is not ready, fails
or is deferred by the deadline stays in the pending view and is retried
by a later run; every write along the way is idempotent.

A race whose result was saved but whose bets were left pending drops out
of the pending view. Each run therefore also re-applies the stored
results of such races without calling the provider again.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog

from furlong.config.pipeline import PipelineConfig
from furlong.config.settings import Settings
from furlong.models.records import Race
from furlong.services.errors import ConfigurationError, RecordValidationError, StoreError
from furlong.services.results_provider.client import (
    RESULT_NOT_AVAILABLE,
    FetchOutcome,
    FetchStatus,
    ResultProviderClient,
)
from furlong.services.results_provider.throttle import ClockFunc, IntervalThrottle, SleepFunc
from furlong.services.settlement.bets import BetSettlementEngine, SettlementSummary
from furlong.services.settlement.finder import PendingRaceFinder
from furlong.services.settlement.model_accuracy import (
    ModelAccuracyAggregator,
    RaceAccuracySummary,
)
from furlong.services.settlement.propagation import PropagationSummary, ResultPropagator
from furlong.services.store.base import SettlementStore
from furlong.services.store.rest import RestStore

logger = structlog.get_logger(__name__)

SCHEDULER_ERROR = "SCHEDULER_ERROR"
SETTLEMENT_ERROR = "SETTLEMENT_ERROR"
RACE_NOT_FOUND = "RACE_NOT_FOUND"


@dataclass
class RaceSettlement:
    """Everything written for one race after its result was saved."""

    race_id: str
    runners: int = 0
    propagation: PropagationSummary | None = None
    bets: SettlementSummary | None = None
    accuracy: RaceAccuracySummary | None = None
    accuracy_error: str | None = None

    @property
    def complete(self) -> bool:
        """Entries and bets were all written; derived tables may still lag."""
        entries_ok = self.propagation is None or self.propagation.entries_ok
        bets_ok = self.bets is None or self.bets.failed == 0
        return entries_ok and bets_ok

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"runners": self.runners}
        if self.propagation is not None:
            data["propagation"] = self.propagation.to_dict()
        if self.bets is not None:
            data["bets"] = self.bets.to_dict()
        if self.accuracy is not None:
            data["model_accuracy"] = self.accuracy.to_dict()
        if self.accuracy_error:
            data["model_accuracy_error"] = self.accuracy_error
        return data


@dataclass
class RaceRunResult:
    """Per-race line of the run report."""

    race_id: str
    status: FetchStatus
    success: bool
    code: str | None = None
    message: str | None = None
    error: str | None = None
    settlement: RaceSettlement | None = None
    repaired: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "race_id": self.race_id,
            "success": self.success,
            "code": self.code,
            "message": self.message,
        }
        if self.repaired:
            data["repaired"] = True
        if self.error is not None:
            data["error"] = self.error
        if self.settlement is not None:
            data["settlement"] = self.settlement.to_dict()
        return data


@dataclass
class RunReport:
    """Summary returned to the caller of a run."""

    processed_count: int = 0
    ready_count: int = 0
    not_ready_count: int = 0
    failed_count: int = 0
    repaired_count: int = 0
    deferred: list[str] = field(default_factory=list)
    results: list[RaceRunResult] = field(default_factory=list)

    @property
    def deferred_count(self) -> int:
        return len(self.deferred)

    def add(self, result: RaceRunResult) -> None:
        self.results.append(result)
        if result.repaired:
            self.repaired_count += 1
        elif result.status == FetchStatus.SAVED:
            self.ready_count += 1
        if result.status == FetchStatus.NOT_READY:
            self.not_ready_count += 1
        elif result.success:
            self.processed_count += 1
        else:
            self.failed_count += 1

    @property
    def message(self) -> str:
        if not self.results and not self.deferred:
            return "No pending races (all done or none match filter)"
        return f"Processed {self.processed_count} races"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "processed_count": self.processed_count,
            "ready_count": self.ready_count,
            "not_ready_count": self.not_ready_count,
            "failed_count": self.failed_count,
            "repaired_count": self.repaired_count,
            "deferred_count": self.deferred_count,
            "results": [result.to_dict() for result in self.results],
        }


class SettlementRunner:
    """
    Bounded, sequential settlement worker.

    Sleep, monotonic clock and wall clock are injected so a whole run can
    be driven in tests without real delay.
    """

    def __init__(
        self,
        store: SettlementStore,
        provider: ResultProviderClient,
        config: PipelineConfig,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.provider = provider
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))

        self.finder = PendingRaceFinder(store, config)
        self.propagator = ResultPropagator(store, now=self._now)
        self.bet_engine = BetSettlementEngine(store, now=self._now)
        self.aggregator = ModelAccuracyAggregator(store, config, now=self._now)

    async def run(
        self,
        race_id: str | None = None,
        target_date: date | None = None,
        limit: int | None = None,
        rate_ms: int | None = None,
    ) -> RunReport:
        """
        Process one batch of due races, then repair unsettled ones.

        Raises:
            StoreError: If the pending races cannot be listed
        """
        started = self._clock()
        config = self.config.with_rate(rate_ms)
        races = await self.finder.find(self._now(), limit, race_id=race_id, target_date=target_date)

        throttle = IntervalThrottle.from_rate_ms(config.rate_ms, sleep=self._sleep, clock=self._clock)
        report = RunReport()
        touched_days: set[date] = set()

        for index, race in enumerate(races):
            if self._deadline_reached(started, config, report, races[index:]):
                break

            await throttle.wait()
            result = await self._process_race(race)
            report.add(result)
            if result.settlement is not None:
                touched_days.add(race.date)

        if not report.deferred:
            await self._repair_unsettled(
                started, config, report, touched_days, limit, race_id, target_date
            )

        if touched_days:
            await self._recompute_days(touched_days)

        logger.info(
            "settlement_run_complete",
            candidates=len(races),
            processed=report.processed_count,
            ready=report.ready_count,
            not_ready=report.not_ready_count,
            failed=report.failed_count,
            repaired=report.repaired_count,
            deferred=report.deferred_count,
            duration_seconds=round(self._clock() - started, 3),
        )
        return report

    def _deadline_reached(
        self,
        started: float,
        config: PipelineConfig,
        report: RunReport,
        remaining: list[Race],
    ) -> bool:
        elapsed = self._clock() - started
        if elapsed < config.run_deadline_seconds:
            return False
        report.deferred.extend(race.race_id for race in remaining)
        logger.warning(
            "settlement_run_deadline_reached",
            elapsed=round(elapsed, 3),
            deadline=config.run_deadline_seconds,
            deferred=report.deferred_count,
        )
        return True

    async def _repair_unsettled(
        self,
        started: float,
        config: PipelineConfig,
        report: RunReport,
        touched_days: set[date],
        limit: int | None,
        race_id: str | None,
        target_date: date | None,
    ) -> None:
        """Re-apply stored results of races that still have pending bets."""
        seen = {result.race_id for result in report.results}
        try:
            candidates = await self.finder.find_unsettled(
                self._now(), limit, race_id=race_id, target_date=target_date
            )
        except StoreError as e:
            logger.error("unsettled_races_list_failed", error=str(e))
            return

        races = [race for race in candidates if race.race_id not in seen]
        for index, race in enumerate(races):
            if self._deadline_reached(started, config, report, races[index:]):
                break

            logger.info("race_repairing", race_id=race.race_id)
            result = RaceRunResult(
                race_id=race.race_id,
                status=FetchStatus.SAVED,
                success=True,
                message="Stored result re-applied",
                repaired=True,
            )
            result = await self._apply_result(race, result)
            report.add(result)
            if result.settlement is not None:
                touched_days.add(race.date)

    async def _process_race(self, race: Race) -> RaceRunResult:
        logger.info("race_processing", race_id=race.race_id)
        try:
            outcome = await self.provider.fetch(race.race_id)
        except Exception as e:
            logger.error("race_fetch_error", race_id=race.race_id, error=str(e), exc_info=True)
            return RaceRunResult(
                race_id=race.race_id,
                status=FetchStatus.FAILED,
                success=False,
                code=SCHEDULER_ERROR,
                message=str(e) or type(e).__name__,
                error=repr(e),
            )

        if outcome.status == FetchStatus.NOT_READY:
            logger.info("race_result_not_ready", race_id=race.race_id)
            return self._fetch_result(outcome)

        if outcome.status == FetchStatus.FAILED:
            logger.warning(
                "race_result_fetch_failed",
                race_id=race.race_id,
                code=outcome.code,
                error=outcome.error or outcome.message,
            )
            return self._fetch_result(outcome)

        return await self._apply_result(race, self._fetch_result(outcome))

    async def _apply_result(self, race: Race, result: RaceRunResult) -> RaceRunResult:
        try:
            settlement = await self.settle_race(race)
        except (StoreError, RecordValidationError) as e:
            logger.error("race_settlement_error", race_id=race.race_id, error=str(e))
            result.success = False
            result.code = SETTLEMENT_ERROR
            result.error = str(e)
            return result

        result.settlement = settlement
        if not settlement.complete:
            result.success = False
            result.code = SETTLEMENT_ERROR
            result.error = "Settlement incomplete"
        logger.info("race_saved", race_id=race.race_id, complete=settlement.complete)
        return result

    @staticmethod
    def _fetch_result(outcome: FetchOutcome) -> RaceRunResult:
        return RaceRunResult(
            race_id=outcome.race_id,
            status=outcome.status,
            success=outcome.success,
            code=outcome.code,
            message=outcome.message,
            error=outcome.error,
        )

    async def settle_race(self, race: Race) -> RaceSettlement:
        """
        Apply a stored result: propagate positions, settle bets, record picks.

        Raises:
            StoreError: If runners or pending bets cannot be read
            RecordValidationError: If a runner or bet row is malformed
        """
        runners = await self.store.list_runners(race.race_id)
        settlement = RaceSettlement(race_id=race.race_id, runners=len(runners))

        settlement.propagation = await self.propagator.propagate(race.race_id, runners)
        settlement.bets = await self.bet_engine.settle(race.race_id, runners)

        try:
            entries = await self.store.list_entries(race.race_id)
            settlement.accuracy = await self.aggregator.record_race(race, entries, runners)
        except (StoreError, RecordValidationError) as e:
            settlement.accuracy_error = str(e)
            logger.error("model_picks_record_failed", race_id=race.race_id, error=str(e))

        return settlement

    async def settle_existing(self, race_id: str) -> RaceRunResult:
        """
        Re-apply an already stored result without calling the provider.

        Repairs one race on demand whose result was saved by an earlier
        run while settlement failed or stopped part way.
        """
        race = await self.store.get_race(race_id)
        if race is None:
            return RaceRunResult(
                race_id=race_id,
                status=FetchStatus.FAILED,
                success=False,
                code=RACE_NOT_FOUND,
                message=f"Race {race_id} not found",
            )
        if await self.store.get_race_result(race_id) is None:
            return RaceRunResult(
                race_id=race_id,
                status=FetchStatus.NOT_READY,
                success=False,
                code=RESULT_NOT_AVAILABLE,
                message="No stored result for this race",
            )

        settlement = await self.settle_race(race)
        await self._recompute_days({race.date})
        result = RaceRunResult(
            race_id=race_id,
            status=FetchStatus.SAVED,
            success=settlement.complete,
            code=None if settlement.complete else SETTLEMENT_ERROR,
            message="Race settled" if settlement.complete else "Settlement incomplete",
            settlement=settlement,
        )
        logger.info("race_resettled", race_id=race_id, complete=settlement.complete)
        return result

    async def _recompute_days(self, days: set[date]) -> None:
        try:
            await self.aggregator.recompute_days(days)
        except (StoreError, RecordValidationError) as e:
            logger.error(
                "model_performance_recompute_failed",
                days=sorted(day.isoformat() for day in days),
                error=str(e),
            )


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncIterator[RestStore]:
    """REST store for the configured data API."""
    if not settings.store_configured:
        raise ConfigurationError("Missing required configuration: store_url, store_service_key")
    async with RestStore(
        settings.store_url,
        settings.store_service_key,
        timeout=settings.store_timeout_seconds,
    ) as store:
        yield store


@asynccontextmanager
async def open_settlement_runner(settings: Settings) -> AsyncIterator[SettlementRunner]:
    """
    Settlement runner wired to the configured store and provider.

    Raises:
        ConfigurationError: If any credential is missing; nothing is called
    """
    settings.require_credentials()
    config = PipelineConfig.from_settings(settings)
    async with open_store(settings) as store, ResultProviderClient(
        settings.provider_url,
        settings.provider_api_key,
        timeout=config.fetch_timeout_seconds,
    ) as provider:
        yield SettlementRunner(store, provider, config)
