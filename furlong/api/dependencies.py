"""FastAPI dependencies for Furlong."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends

from furlong.config import PipelineConfig, Settings, get_settings
from furlong.services.settlement.model_accuracy import ModelAccuracyAggregator
from furlong.services.settlement.pipeline import (
    SettlementRunner,
    open_settlement_runner,
    open_store,
)


async def get_redis(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.aclose()


async def get_settlement_runner(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[SettlementRunner, None]:
    """Get a settlement runner; raises ConfigurationError if credentials are missing."""
    async with open_settlement_runner(settings) as runner:
        yield runner


async def get_model_accuracy_aggregator(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[ModelAccuracyAggregator, None]:
    """Get the accuracy aggregator backed by the configured store."""
    async with open_store(settings) as store:
        yield ModelAccuracyAggregator(store, PipelineConfig.from_settings(settings))
