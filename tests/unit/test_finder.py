"""Unit tests for pending-race discovery."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from furlong.config.pipeline import PipelineConfig
from furlong.models.records import Race
from furlong.services.errors import StoreError
from furlong.services.settlement.finder import PendingRaceFinder, is_settle_due

RACE_DAY = date(2026, 6, 12)
# 15:00 in London (BST)
RUN_TIME = datetime(2026, 6, 12, 14, 0, tzinfo=timezone.utc)


def make_race(off_time: str, race_date: date = RACE_DAY) -> Race:
    return Race(race_id="R", date=race_date, off_time=off_time)


class TestIsSettleDue:
    """Test the off-time plus settle-delay predicate (now is 15:00 BST)."""

    def test_race_due_after_delay(self):
        """02:15 is 14:15; due at 14:35, so due at 15:00."""
        assert is_settle_due(make_race("02:15"), RUN_TIME)

    def test_race_exactly_at_delay_is_due(self):
        """02:40 is 14:40; 14:40 + 20 minutes is exactly 15:00."""
        assert is_settle_due(make_race("02:40"), RUN_TIME)

    def test_race_inside_delay_is_not_due(self):
        """02:45 is 14:45; not due until 15:05."""
        assert not is_settle_due(make_race("02:45"), RUN_TIME)

    def test_settle_delay_is_configurable(self):
        assert is_settle_due(make_race("02:45"), RUN_TIME, settle_delay_minutes=10)

    def test_boundary_changes_eligibility(self):
        """10:30 is 22:30 with boundary 11 but 10:30 in the morning with boundary 9."""
        assert not is_settle_due(make_race("10:30"), RUN_TIME, pm_hour_max=11)
        assert is_settle_due(make_race("10:30"), RUN_TIME, pm_hour_max=9)

    def test_earlier_day_always_due(self):
        assert is_settle_due(make_race("09:00", date(2026, 6, 11)), RUN_TIME)

    def test_future_day_never_due(self):
        assert not is_settle_due(make_race("12:00", date(2026, 6, 13)), RUN_TIME)

    def test_comparison_uses_london_time(self):
        """13:50 UTC is 14:50 BST, so a 14:15 race plus 20 minutes is due."""
        now = datetime(2026, 6, 12, 13, 50, tzinfo=timezone.utc)
        assert is_settle_due(make_race("02:15"), now)


class TestPendingRaceFinder:
    """Test batch selection from the pending view."""

    def setup_method(self):
        self.config = PipelineConfig()

    def find(self, store, **kwargs):
        finder = PendingRaceFinder(store, self.config)
        return asyncio.run(finder.find(RUN_TIME, **kwargs))

    def test_returns_due_races_in_chronological_order(self, store):
        """12:30 sorts before 01:10 (13:10) even though the raw text sorts after it."""
        store.add_race("late", "02:00")
        store.add_race("noon", "12:30")
        store.add_race("early", "01:10")
        store.add_race("future", "04:00")
        races = self.find(store)
        assert [race.race_id for race in races] == ["noon", "early", "late"]

    def test_races_with_results_are_excluded(self, store):
        store.add_race("R1", "01:00")
        store.add_race("R2", "01:30")
        store.add_result("R1", [])
        assert [race.race_id for race in self.find(store)] == ["R2"]

    def test_previous_days_come_first(self, store):
        store.add_race("today", "12:10")
        store.add_race("yesterday", "08:00", race_date=date(2026, 6, 11))
        assert [race.race_id for race in self.find(store)] == ["yesterday", "today"]

    def test_lookback_window(self, store):
        """Races older than the lookback are not candidates."""
        store.add_race("old", "01:00", race_date=date(2026, 6, 1))
        store.add_race("recent", "01:00", race_date=date(2026, 6, 9))
        assert [race.race_id for race in self.find(store)] == ["recent"]

    def test_default_limit(self, store):
        for index in range(12):
            store.add_race(f"R{index:02d}", f"12:{index:02d}")
        assert len(self.find(store)) == 8

    @pytest.mark.parametrize("limit, expected", [(3, 3), (0, 8), (-5, 8), (None, 8), (500, 50)])
    def test_limit_is_clamped(self, store, limit, expected):
        for index in range(60):
            store.add_race(f"R{index:02d}", "12:00", race_date=date(2026, 6, 11))
        assert len(self.find(store, limit=limit)) == expected

    def test_race_id_scope(self, store):
        store.add_race("R1", "01:00")
        store.add_race("R2", "01:30")
        assert [race.race_id for race in self.find(store, race_id="R2")] == ["R2"]

    def test_target_date_scope(self, store):
        store.add_race("today", "01:00")
        store.add_race("yesterday", "01:00", race_date=date(2026, 6, 11))
        races = self.find(store, target_date=date(2026, 6, 11))
        assert [race.race_id for race in races] == ["yesterday"]

    def test_store_failure_propagates(self, store):
        store.fail_on("list_pending_races")
        with pytest.raises(StoreError):
            self.find(store)

    def test_malformed_row_is_skipped(self, store):
        store.add_race("R1", "01:00")
        store.races["bad"] = {"race_id": None, "date": "2026-06-12", "off_time": "01:30"}

        assert [race.race_id for race in self.find(store)] == ["R1"]

    def test_unsettled_races(self, store):
        store.add_race("R1", "01:00")
        store.add_race("R2", "01:30")
        store.add_race("R3", "02:00")
        store.add_result("R1", [{"horse_id": "H1", "position": 1}])
        store.add_result("R2", [{"horse_id": "H1", "position": 1}])
        store.add_bet("B1", "R2", horse_id="H1", bet_amount="5", odds="2")
        store.add_bet("B2", "R3", horse_id="H1", bet_amount="5", odds="2")
        store.add_bet("B3", "R1", horse_id="H1", bet_amount="5", odds="2", status="won")

        finder = PendingRaceFinder(store, self.config)
        races = asyncio.run(finder.find_unsettled(RUN_TIME))

        assert [race.race_id for race in races] == ["R2"]
