"""Settlement API endpoints.

The run endpoint is what the scheduler calls. Its body is optional and
lenient: fields that fail validation are dropped and the run proceeds with
defaults, so a schedule with a stale payload still settles races.
"""

from datetime import date
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from furlong.api.dependencies import get_settlement_runner
from furlong.services.errors import StoreError
from furlong.services.results_provider.client import RESULT_NOT_AVAILABLE
from furlong.services.settlement.pipeline import RACE_NOT_FOUND, SettlementRunner

router = APIRouter(prefix="/api/settlement", tags=["settlement"])
logger = structlog.get_logger(__name__)


class RunOptions(BaseModel):
    """Optional tuning for one run."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    race_id: str | None = None
    target_date: date | None = None
    limit: int | None = Field(default=None, gt=0)
    rate_ms: int | None = Field(default=None, ge=0, alias="rateMs")


class RaceResultItem(BaseModel):
    """Per-race line of a run."""

    race_id: str
    success: bool
    code: str | None = None
    message: str | None = None
    error: str | None = None
    settlement: dict[str, Any] | None = None
    repaired: bool = False


class RunResponse(BaseModel):
    """Run summary; 200 with failed_count > 0 is a partial success."""

    success: bool
    message: str
    processed_count: int
    ready_count: int
    not_ready_count: int
    failed_count: int
    repaired_count: int = 0
    deferred_count: int = 0
    results: list[RaceResultItem]


def parse_run_options(payload: Any) -> RunOptions:
    """Validate a run body, dropping any field that does not validate."""
    if not isinstance(payload, dict):
        return RunOptions()
    try:
        return RunOptions.model_validate(payload)
    except ValidationError as e:
        invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
        logger.info("run_options_ignored", fields=sorted(str(name) for name in invalid))
        return RunOptions.model_validate(
            {key: value for key, value in payload.items() if key not in invalid}
        )


async def read_run_options(request: Request) -> RunOptions:
    """Read the optional JSON body; a missing or malformed body means defaults."""
    body = await request.body()
    if not body:
        return RunOptions()
    try:
        payload = await request.json()
    except ValueError:
        logger.info("run_body_malformed")
        return RunOptions()
    return parse_run_options(payload)


@router.post("/run", response_model=RunResponse)
async def run_settlement(
    options: RunOptions = Depends(read_run_options),
    runner: SettlementRunner = Depends(get_settlement_runner),
):
    """
    Fetch results for due races and settle them.

    Returns 502 with code LIST_PENDING_RACES_FAILED when the pending races
    cannot be read; per-race failures are reported in ``results``.
    """
    try:
        report = await runner.run(
            race_id=options.race_id,
            target_date=options.target_date,
            limit=options.limit,
            rate_ms=options.rate_ms,
        )
    except StoreError as e:
        logger.error("list_pending_races_failed", error=str(e), status_code=e.status_code)
        return JSONResponse(
            status_code=502,
            content={
                "success": False,
                "code": "LIST_PENDING_RACES_FAILED",
                "message": "Failed to fetch pending races",
                "detail": str(e),
            },
        )
    return RunResponse(**report.to_dict())


@router.post("/races/{race_id}/settle", response_model=RaceResultItem)
async def settle_race(
    race_id: str,
    runner: SettlementRunner = Depends(get_settlement_runner),
):
    """
    Re-apply the stored result of one race without calling the provider.

    404 if the race is unknown, 409 if it has no stored result yet.
    """
    result = await runner.settle_existing(race_id)
    item = RaceResultItem(**result.to_dict())
    if result.code == RACE_NOT_FOUND:
        return JSONResponse(status_code=404, content=item.model_dump())
    if result.code == RESULT_NOT_AVAILABLE:
        return JSONResponse(status_code=409, content=item.model_dump())
    return item
