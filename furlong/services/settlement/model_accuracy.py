"""Model accuracy ledger.

Phase 1 records each prediction model's top pick in a finished race and
how it placed. Phase 2 rebuilds the per-model, per-day accuracy rows from
those picks. Phase 2 always recounts a whole day from source rows, so it
can be rerun at any time after late or corrected results.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

import structlog

from furlong.config.pipeline import ENSEMBLE_MODEL, ModelSpec, PipelineConfig
from furlong.models.records import (
    MLModelPerformance,
    MLModelRaceResult,
    Race,
    RaceEntry,
    RaceRunner,
)
from furlong.services.settlement.bets import normalize_horse_name
from furlong.services.store.base import SettlementStore

logger = structlog.get_logger(__name__)

_NO_ODDS = Decimal("Infinity")


def round_half_up(value: float, places: int = 2) -> float:
    """Round to ``places`` decimals, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def pick_top(entries: Iterable[RaceEntry], column: str) -> RaceEntry | None:
    """
    A model's top pick among a race's entries.

    Highest probability wins. Ties go to the higher ensemble probability,
    then the shorter price (entries without a price rank last), then the
    alphabetically first horse name. Entries with no positive probability
    are not candidates.
    """
    candidates = [entry for entry in entries if entry.probability(column) > 0]
    if not candidates:
        return None

    def rank(entry: RaceEntry) -> tuple[float, float, Decimal, str]:
        odds = entry.decimal_odds
        return (
            -entry.probability(column),
            -entry.probability("ensemble_proba"),
            odds if odds is not None else _NO_ODDS,
            normalize_horse_name(entry.horse_name),
        )

    return min(candidates, key=rank)


def find_runner(entry: RaceEntry, runners: Iterable[RaceRunner]) -> RaceRunner | None:
    """The runner row for an entry, by horse id or else by name."""
    runners = list(runners)
    if entry.horse_id:
        for runner in runners:
            if runner.horse_id and runner.horse_id == entry.horse_id:
                return runner
    name = normalize_horse_name(entry.horse_name)
    if name:
        for runner in runners:
            if normalize_horse_name(runner.horse) == name:
                return runner
    return None


def build_model_result(
    race: Race,
    model: ModelSpec,
    pick: RaceEntry,
    runner: RaceRunner,
) -> MLModelRaceResult:
    """The accuracy row for one model's pick that finished at a known position."""
    position = runner.position
    is_winner = position == 1
    prediction_correct = None
    if model.name == ENSEMBLE_MODEL:
        if pick.predicted_winner is None:
            prediction_correct = is_winner
        else:
            prediction_correct = pick.predicted_winner == is_winner
    return MLModelRaceResult(
        race_id=race.race_id,
        race_date=race.date,
        horse_id=pick.horse_id or runner.horse_id,
        horse_name=pick.horse_name or runner.horse,
        model_name=model.name,
        predicted_probability=pick.probability(model.column),
        actual_position=position,
        is_winner=is_winner,
        is_top3=position <= 3,
        prediction_correct=prediction_correct,
    )


def summarize(
    model_name: str,
    analysis_date: date,
    rows: Iterable[MLModelRaceResult],
) -> MLModelPerformance:
    """Recount one model's accuracy for one race day."""
    rows = [row for row in rows if row.model_name == model_name]
    total = len(rows)
    winners = [row for row in rows if row.is_winner]
    losers = [row for row in rows if not row.is_winner]

    def mean_confidence(group: list[MLModelRaceResult]) -> float:
        if not group:
            return 0.0
        return round_half_up(
            sum(row.predicted_probability for row in group) / len(group) * 100
        )

    def percentage(count: int) -> float:
        return round_half_up(count / total * 100) if total else 0.0

    top3 = sum(1 for row in rows if row.is_top3)
    return MLModelPerformance(
        model_name=model_name,
        analysis_date=analysis_date,
        total_predictions=total,
        correct_winner_predictions=len(winners),
        correct_top3_predictions=top3,
        winner_accuracy_percentage=percentage(len(winners)),
        top3_accuracy_percentage=percentage(top3),
        average_confidence_percentage=mean_confidence(rows),
        average_confidence_when_correct=mean_confidence(winners),
        average_confidence_when_incorrect=mean_confidence(losers),
        ensemble_winner_predictions_correct=sum(
            1 for row in rows if row.prediction_correct is True
        ),
        ensemble_winner_predictions_incorrect=sum(
            1 for row in rows if row.prediction_correct is False
        ),
    )


@dataclass
class RaceAccuracySummary:
    """Phase 1 outcome for one race."""

    race_id: str
    race_date: date
    recorded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    stale_removed: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "recorded": list(self.recorded),
            "skipped": list(self.skipped),
            "stale_removed": self.stale_removed,
        }


class ModelAccuracyAggregator:
    """Maintains ml_model_race_results and ml_model_performance."""

    def __init__(
        self,
        store: SettlementStore,
        config: PipelineConfig,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def record_race(
        self,
        race: Race,
        entries: list[RaceEntry],
        runners: list[RaceRunner],
    ) -> RaceAccuracySummary:
        """
        Phase 1: write each model's top pick for a finished race.

        A model is skipped when it has no positive probability in the race
        or its pick has no finishing position.
        """
        summary = RaceAccuracySummary(race_id=race.race_id, race_date=race.date)
        rows: list[MLModelRaceResult] = []

        for model in self.config.models:
            pick = pick_top(entries, model.column)
            if pick is None:
                summary.skipped.append(model.name)
                logger.debug("model_pick_missing", race_id=race.race_id, model=model.name)
                continue
            runner = find_runner(pick, runners)
            if runner is None or runner.position is None or not (pick.horse_id or runner.horse_id):
                summary.skipped.append(model.name)
                logger.debug(
                    "model_pick_unplaced",
                    race_id=race.race_id,
                    model=model.name,
                    horse_name=pick.horse_name,
                )
                continue
            rows.append(build_model_result(race, model, pick, runner))

        await self.store.upsert_model_race_results(rows)
        for row in rows:
            summary.recorded.append(row.model_name)
            summary.stale_removed += await self.store.delete_stale_model_race_results(
                row.race_id, row.model_name, row.horse_id
            )

        logger.info(
            "model_picks_recorded",
            race_id=race.race_id,
            race_date=race.date.isoformat(),
            recorded=summary.recorded,
            skipped=summary.skipped,
            stale_removed=summary.stale_removed,
        )
        return summary

    async def recompute(
        self,
        target_date: date | None = None,
        since: datetime | None = None,
        force: bool = False,
    ) -> list[MLModelPerformance]:
        """
        Phase 2: rebuild accuracy rows for the affected race days.

        Args:
            target_date: Recompute exactly this race day
            since: Recompute every day with picks created since this time
            force: Widen the default window to the forced-recompute window
        """
        if target_date is not None:
            days = {target_date}
        else:
            if since is None:
                window = (
                    timedelta(days=self.config.aggregation_force_days)
                    if force
                    else timedelta(minutes=self.config.aggregation_recent_minutes)
                )
                since = self._now() - window
            recent = await self.store.list_model_race_results(created_since=since)
            days = {row.race_date for row in recent}

        return await self.recompute_days(days)

    async def recompute_days(self, days: Iterable[date]) -> list[MLModelPerformance]:
        """Recount every model for each given race day from all of that day's picks."""
        performance: list[MLModelPerformance] = []
        for day in sorted(set(days)):
            rows = await self.store.list_model_race_results(race_date=day)
            by_model: dict[str, list[MLModelRaceResult]] = defaultdict(list)
            for row in rows:
                by_model[row.model_name].append(row)

            day_rows = [
                summarize(model_name, day, model_rows)
                for model_name, model_rows in sorted(by_model.items())
            ]
            await self.store.upsert_model_performance(day_rows)
            performance.extend(day_rows)

            logger.info(
                "model_performance_recomputed",
                analysis_date=day.isoformat(),
                models=len(day_rows),
                picks=len(rows),
            )
        return performance
