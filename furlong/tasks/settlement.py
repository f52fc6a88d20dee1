"""Settlement tasks.

The beat schedule calls run_settlement_task every five minutes. Each call
is a short stateless run: races beyond the batch cap or the run deadline
are found again by the next call.
"""

import asyncio
from datetime import date
from typing import Any

import structlog
from celery import shared_task

from furlong.config import PipelineConfig, get_settings
from furlong.services.settlement.model_accuracy import ModelAccuracyAggregator
from furlong.services.settlement.pipeline import open_settlement_runner, open_store

logger = structlog.get_logger(__name__)


async def run_settlement(
    race_id: str | None = None,
    target_date: str | None = None,
    limit: int | None = None,
    rate_ms: int | None = None,
) -> dict[str, Any]:
    """Run one settlement batch and return the report as a dict."""
    async with open_settlement_runner(get_settings()) as runner:
        report = await runner.run(
            race_id=race_id,
            target_date=date.fromisoformat(target_date) if target_date else None,
            limit=limit,
            rate_ms=rate_ms,
        )
    return report.to_dict()


async def recompute_model_performance(
    target_date: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """Rebuild model accuracy rows and return a summary."""
    settings = get_settings()
    async with open_store(settings) as store:
        aggregator = ModelAccuracyAggregator(store, PipelineConfig.from_settings(settings))
        rows = await aggregator.recompute(
            target_date=date.fromisoformat(target_date) if target_date else None,
            force=force,
        )

    stats = {
        "analysis_dates_processed": len({row.analysis_date for row in rows}),
        "models_processed": len(rows),
    }
    logger.info("model_performance_task_complete", force=force, **stats)
    return stats


@shared_task(name="furlong.tasks.settlement.run_settlement_task")
def run_settlement_task(
    race_id: str | None = None,
    target_date: str | None = None,
    limit: int | None = None,
    rate_ms: int | None = None,
) -> dict[str, Any]:
    """
    Celery task to fetch results and settle due races.

    Runs every 5 minutes.
    """
    return asyncio.run(run_settlement(race_id, target_date, limit, rate_ms))


@shared_task(name="furlong.tasks.settlement.recompute_model_performance_task")
def recompute_model_performance_task(
    target_date: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """
    Celery task to rebuild model accuracy rows.

    Runs hourly over the last week to pick up late corrections.
    """
    return asyncio.run(recompute_model_performance(target_date, force))
