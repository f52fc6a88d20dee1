"""Unit tests for the Celery task wiring."""

from contextlib import asynccontextmanager

import pytest

from furlong.config import Settings
from furlong.services.errors import ConfigurationError
from furlong.tasks import celery_app
from furlong.tasks import settlement as settlement_tasks


class TestBeatSchedule:
    """Test the periodic schedule."""

    def test_settlement_every_five_minutes(self):
        entry = celery_app.conf.beat_schedule["run-settlement"]
        assert entry["task"] == "furlong.tasks.settlement.run_settlement_task"
        assert entry["schedule"] == 300.0
        assert entry["options"]["expires"] < 300

    def test_hourly_recompute_is_forced(self):
        entry = celery_app.conf.beat_schedule["recompute-model-performance"]
        assert entry["kwargs"] == {"force": True}

    def test_tasks_registered(self):
        assert "furlong.tasks.settlement.run_settlement_task" in celery_app.tasks
        assert "furlong.tasks.settlement.recompute_model_performance_task" in celery_app.tasks


class TestSettlementTask:
    """Test the task bodies."""

    def test_missing_credentials_fail_before_any_call(self, monkeypatch):
        monkeypatch.setattr(
            settlement_tasks,
            "get_settings",
            lambda: Settings(_env_file=None, store_url="", store_service_key="", provider_url="", provider_api_key=""),
        )

        with pytest.raises(ConfigurationError):
            settlement_tasks.run_settlement_task()

    def test_run_returns_report(self, monkeypatch, make_runner, provider, e2e_race):
        provider.script["R1"] = e2e_race
        runner = make_runner()
        seen = {}

        @asynccontextmanager
        async def fake_open(settings):
            seen["settings"] = settings
            yield runner

        monkeypatch.setattr(settlement_tasks, "open_settlement_runner", fake_open)

        report = settlement_tasks.run_settlement_task(target_date="2026-06-12", rate_ms=0)

        assert report["success"] is True
        assert report["processed_count"] == 1
        assert seen["settings"] is not None
