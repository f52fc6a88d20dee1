"""Pytest configuration and fixtures for Furlong tests."""

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from furlong.config.pipeline import PipelineConfig
from furlong.models.records import (
    Bankroll,
    BankrollLedgerEntry,
    BetStatus,
    MLModelPerformance,
    MLModelRaceResult,
    Race,
    RaceEntry,
    RaceResult,
    RaceRunner,
)
from furlong.services.errors import StoreError
from furlong.services.results_provider.client import (
    RESULT_NOT_AVAILABLE,
    FetchOutcome,
    FetchStatus,
)
from furlong.services.settlement.pipeline import SettlementRunner
from furlong.services.store.base import PROPAGATION_TABLES, SettlementStore

RACE_DAY = date(2026, 6, 12)
# 15:00 in London (BST)
RUN_TIME = datetime(2026, 6, 12, 14, 0, tzinfo=timezone.utc)


class InMemoryStore(SettlementStore):
    """
    Settlement store over plain dicts.

    Honours the same conflict keys and guards as the REST store. Any
    operation can be made to fail with ``fail_on``.
    """

    def __init__(self, now=None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.races: dict[str, dict[str, Any]] = {}
        self.race_results: dict[str, dict[str, Any]] = {}
        self.race_runners: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.derived: dict[str, list[dict[str, Any]]] = {table: [] for table in PROPAGATION_TABLES}
        self.bets: dict[str, dict[str, Any]] = {}
        self.ledger: dict[str, dict[str, Any]] = {}
        self.bankroll: dict[str, dict[str, Any]] = {}
        self.model_results: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.model_performance: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[str] = []
        self._failures: dict[str, Exception] = {}

    # Seeding

    def add_race(self, race_id: str, off_time: str, race_date: date = RACE_DAY, course: str = "Ascot"):
        self.races[race_id] = {
            "race_id": race_id,
            "date": race_date.isoformat(),
            "off_time": off_time,
            "course": course,
        }

    def add_entry(self, race_id: str, horse_id: str, horse_name: str, **values):
        self.derived["race_entries"].append(
            {"race_id": race_id, "horse_id": horse_id, "horse_name": horse_name, **values}
        )

    def add_watch(self, table: str, race_id: str, horse_id: str, user_id: str = "u1"):
        self.derived[table].append({"race_id": race_id, "horse_id": horse_id, "user_id": user_id})

    def add_result(self, race_id: str, runners: list[dict[str, Any]]):
        race = self.races.get(race_id, {})
        self.race_results[race_id] = {
            "race_id": race_id,
            "date": race.get("date", RACE_DAY.isoformat()),
            "course": race.get("course", "Ascot"),
            "off": race.get("off_time"),
        }
        self.race_runners[race_id] = [{"race_id": race_id, **runner} for runner in runners]

    def add_bet(self, bet_id: str, race_id: str, user_id: str = "u1", **values):
        self.bets[bet_id] = {
            "id": bet_id,
            "race_id": race_id,
            "user_id": user_id,
            "status": "pending",
            **values,
        }

    def rows(self, table: str, race_id: str, horse_id: str) -> list[dict[str, Any]]:
        return [
            row for row in self.derived[table]
            if row["race_id"] == race_id and row["horse_id"] == horse_id
        ]

    def fail_on(self, operation: str, exc: Exception | None = None):
        """Make an operation raise; keys are method names, optionally ``name:detail``."""
        self._failures[operation] = exc or StoreError(f"{operation} failed", status_code=500)

    def _call(self, operation: str, detail: str | None = None):
        key = f"{operation}:{detail}" if detail is not None else operation
        self.calls.append(key)
        for name in (operation, key):
            if name in self._failures:
                raise self._failures[name]

    # Races

    def _races(self, date_from, date_to, race_id, keep) -> list[Race]:
        rows = [
            row for row in self.races.values()
            if keep(row)
            and date_from.isoformat() <= str(row.get("date")) <= date_to.isoformat()
            and (race_id is None or row.get("race_id") == race_id)
        ]
        rows.sort(key=lambda row: (str(row.get("date")), str(row.get("off_time"))))
        return Race.parse_valid_rows(rows)

    async def list_pending_races(self, date_from, date_to, race_id=None):
        self._call("list_pending_races")
        return self._races(
            date_from, date_to, race_id,
            lambda row: row.get("race_id") not in self.race_results,
        )

    async def list_unsettled_races(self, date_from, date_to, race_id=None):
        self._call("list_unsettled_races")
        pending = {
            row["race_id"] for row in self.bets.values()
            if row["status"] == BetStatus.PENDING.value
        }
        return self._races(
            date_from, date_to, race_id,
            lambda row: row.get("race_id") in self.race_results and row.get("race_id") in pending,
        )

    async def get_race(self, race_id):
        self._call("get_race")
        row = self.races.get(race_id)
        return Race.parse_row(row) if row else None

    async def get_race_result(self, race_id):
        self._call("get_race_result")
        row = self.race_results.get(race_id)
        return RaceResult.parse_row(row) if row else None

    async def list_runners(self, race_id):
        self._call("list_runners", race_id)
        runners = RaceRunner.parse_rows(self.race_runners.get(race_id, []))
        return sorted(runners, key=lambda r: (r.position is None, r.position or 0))

    async def list_entries(self, race_id):
        self._call("list_entries", race_id)
        return RaceEntry.parse_rows(
            row for row in self.derived["race_entries"] if row["race_id"] == race_id
        )

    # Propagation

    async def set_finishing_position(self, table, race_id, horse_id, position, updated_at):
        self._call("set_finishing_position", table)
        changed = 0
        for row in self.rows(table, race_id, horse_id):
            if row.get("finishing_position") != position:
                row["finishing_position"] = position
                row["result_updated_at"] = updated_at.isoformat()
                changed += 1
        return changed

    # Bets and bankroll

    def set_balance(self, user_id: str, amount: str):
        self.bankroll[user_id] = {"user_id": user_id, "current_amount": amount}

    async def list_pending_bets(self, race_id):
        self._call("list_pending_bets")
        return [
            dict(row) for row in self.bets.values()
            if row["race_id"] == race_id and row["status"] == BetStatus.PENDING.value
        ]

    async def mark_bet_settled(self, bet_id, status, settled_at):
        self._call("mark_bet_settled", bet_id)
        row = self.bets.get(bet_id)
        if row is None or row["status"] != BetStatus.PENDING.value:
            return False
        row["status"] = status.value
        row["updated_at"] = settled_at.isoformat()
        return True

    async def apply_ledger_entry(self, entry: BankrollLedgerEntry):
        self._call("apply_ledger_entry", entry.user_id)
        if entry.reference in self.ledger:
            return None
        self.ledger[entry.reference] = {
            **entry.model_dump(mode="json", exclude={"created_at"}),
            "created_at": self._now().isoformat(),
        }
        current = self.bankroll.get(entry.user_id, {}).get("current_amount", "0")
        amount = Decimal(current) + entry.amount
        self.bankroll[entry.user_id] = {
            "user_id": entry.user_id,
            "current_amount": str(amount),
            "updated_at": self._now().isoformat(),
        }
        return Bankroll(user_id=entry.user_id, current_amount=amount)

    def balance(self, user_id: str) -> Decimal:
        return Decimal(self.bankroll[user_id]["current_amount"])

    # Model accuracy

    async def upsert_model_race_results(self, rows: list[MLModelRaceResult]):
        self._call("upsert_model_race_results")
        for row in rows:
            key = (row.race_id, row.horse_id, row.model_name)
            existing = self.model_results.get(key)
            created_at = existing["created_at"] if existing else self._now().isoformat()
            self.model_results[key] = {
                **row.model_dump(mode="json", exclude={"created_at"}),
                "created_at": created_at,
            }

    async def delete_stale_model_race_results(self, race_id, model_name, keep_horse_id):
        self._call("delete_stale_model_race_results")
        stale = [
            key for key in self.model_results
            if key[0] == race_id and key[2] == model_name and key[1] != keep_horse_id
        ]
        for key in stale:
            del self.model_results[key]
        return len(stale)

    async def list_model_race_results(self, race_date=None, created_since=None):
        self._call("list_model_race_results")
        rows = [
            row for row in self.model_results.values()
            if (race_date is None or row["race_date"] == race_date.isoformat())
            and (
                created_since is None
                or datetime.fromisoformat(row["created_at"]) >= created_since
            )
        ]
        return MLModelRaceResult.parse_rows(rows)

    async def upsert_model_performance(self, rows: list[MLModelPerformance]):
        self._call("upsert_model_performance")
        for row in rows:
            data = row.model_dump(mode="json")
            self.model_performance[(data["model_name"], data["analysis_date"])] = data

    def performance(self, model_name: str, day: date = RACE_DAY) -> MLModelPerformance:
        return MLModelPerformance.parse_row(self.model_performance[(model_name, day.isoformat())])


class FakeClock:
    """Monotonic clock, async sleep and wall clock that only move when told to."""

    def __init__(self, start: datetime = RUN_TIME):
        self.start = start
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.elapsed

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds


class FakeProvider:
    """
    Scripted result provider.

    ``script`` maps a race id to runner rows (saved; the rows are written to
    the store like the real provider does), to a FetchOutcome, or to an
    exception to raise. Unscripted races are not ready.
    """

    def __init__(self, store: InMemoryStore, clock: FakeClock, cost_seconds: float = 0.0):
        self.store = store
        self.clock = clock
        self.cost_seconds = cost_seconds
        self.script: dict[str, Any] = {}
        self.calls: list[str] = []
        self.call_times: list[float] = []

    async def fetch(self, race_id: str) -> FetchOutcome:
        self.calls.append(race_id)
        self.call_times.append(self.clock.monotonic())
        self.clock.advance(self.cost_seconds)
        scripted = self.script.get(race_id)
        if isinstance(scripted, Exception):
            raise scripted
        if isinstance(scripted, FetchOutcome):
            return scripted
        if scripted is None:
            return FetchOutcome(
                race_id=race_id,
                status=FetchStatus.NOT_READY,
                code=RESULT_NOT_AVAILABLE,
                message="Result not available yet",
                http_status=404,
            )
        self.store.add_result(race_id, scripted)
        return FetchOutcome(race_id=race_id, status=FetchStatus.SAVED, http_status=200)


@pytest.fixture
def clock():
    """Fake clock starting at 15:00 London time on the race day."""
    return FakeClock()


@pytest.fixture
def store(clock):
    """Empty in-memory store stamping rows with the fake wall clock."""
    return InMemoryStore(now=clock.now)


@pytest.fixture
def provider(store, clock):
    """Scripted provider writing saved results into the store."""
    return FakeProvider(store, clock)


@pytest.fixture
def config():
    """Default pipeline configuration."""
    return PipelineConfig()


@pytest.fixture
def make_runner(store, provider, clock, config):
    """Build a SettlementRunner over the fakes, optionally with a different config."""

    def _make(pipeline_config: PipelineConfig | None = None) -> SettlementRunner:
        return SettlementRunner(
            store,
            provider,
            pipeline_config or config,
            sleep=clock.sleep,
            clock=clock.monotonic,
            now=clock.now,
        )

    return _make


@pytest.fixture
def e2e_race(store):
    """
    Race R1 at "02:15" (14:15) with five entries and one pending bet.

    Ensemble probabilities are 0.41, 0.22, 0.18, 0.12 and 0.07; the bet is
    10 at 4.0 on the top entry, H1.
    """
    store.add_race("R1", "02:15")
    probabilities = [0.41, 0.22, 0.18, 0.12, 0.07]
    for index, probability in enumerate(probabilities, start=1):
        store.add_entry(
            "R1",
            f"H{index}",
            f"Horse {index}",
            mlp_proba=probability,
            rf_proba=probability,
            xgboost_proba=probability,
            benter_proba=probability,
            ensemble_proba=probability,
            predicted_winner=index == 1,
            current_odds=f"{index + 1}/1",
        )
    store.add_watch("selections", "R1", "H1")
    store.add_watch("shortlist", "R1", "H1")
    store.add_bet("B1", "R1", horse_id="H1", horse_name="Horse 1", bet_amount="10", odds="4.0")
    runners = [
        {"horse_id": f"H{index}", "horse": f"Horse {index}", "position": index}
        for index in range(1, 6)
    ]
    return runners
