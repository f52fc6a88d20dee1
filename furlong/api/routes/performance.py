"""Model accuracy API endpoints."""

from datetime import date

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from furlong.api.dependencies import get_model_accuracy_aggregator
from furlong.models.records import MLModelPerformance
from furlong.services.settlement.model_accuracy import ModelAccuracyAggregator

router = APIRouter(prefix="/api/model-performance", tags=["model-performance"])
logger = structlog.get_logger(__name__)


class RecomputeRequest(BaseModel):
    """Scope of a recompute; empty means picks from the last few minutes."""

    target_date: date | None = None
    force_recalculate: bool = False


class RecomputeResponse(BaseModel):
    """Rows rebuilt by a recompute."""

    success: bool
    analysis_dates_processed: int
    models_processed: int
    performance: list[MLModelPerformance]


@router.post("/recompute", response_model=RecomputeResponse)
async def recompute_model_performance(
    request: RecomputeRequest | None = None,
    aggregator: ModelAccuracyAggregator = Depends(get_model_accuracy_aggregator),
) -> RecomputeResponse:
    """Rebuild per-model, per-day accuracy from the stored picks."""
    request = request or RecomputeRequest()
    rows = await aggregator.recompute(
        target_date=request.target_date,
        force=request.force_recalculate,
    )
    days = {row.analysis_date for row in rows}
    logger.info(
        "model_performance_recompute_requested",
        target_date=request.target_date.isoformat() if request.target_date else None,
        force=request.force_recalculate,
        days=len(days),
        rows=len(rows),
    )
    return RecomputeResponse(
        success=True,
        analysis_dates_processed=len(days),
        models_processed=len(rows),
        performance=rows,
    )
