"""Admin API endpoints.

Provides manual triggers for the scheduled settlement tasks. These
endpoints should be protected in production (not implemented here).
"""

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


class TaskTriggerResponse(BaseModel):
    """Response from task trigger."""
    task_name: str
    task_id: str
    status: str
    message: str


# Map of friendly names to actual Celery task names
TASK_MAP = {
    "run-settlement": "furlong.tasks.settlement.run_settlement_task",
    "recompute-model-performance": "furlong.tasks.settlement.recompute_model_performance_task",
}


@router.post("/trigger-task/{task_name}", response_model=TaskTriggerResponse)
async def trigger_task(task_name: str) -> TaskTriggerResponse:
    """
    Queue a background task on the worker.

    Available tasks:
    - run-settlement: Fetch results for due races and settle bets
    - recompute-model-performance: Rebuild recent model accuracy rows
    """
    if task_name not in TASK_MAP:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown task: {task_name}. Available: {list(TASK_MAP.keys())}"
        )

    celery_task_name = TASK_MAP[task_name]

    try:
        from furlong.tasks import celery_app

        result = celery_app.send_task(celery_task_name)
    except Exception as e:
        logger.error("task_trigger_failed", task_name=task_name, error=str(e))
        raise HTTPException(
            status_code=500,
            detail=f"Failed to trigger task: {str(e)}"
        )

    logger.info(
        "task_triggered_manually",
        task_name=task_name,
        celery_task=celery_task_name,
        task_id=result.id,
    )
    return TaskTriggerResponse(
        task_name=task_name,
        task_id=result.id,
        status="submitted",
        message=f"Task {task_name} submitted. Check worker logs for progress."
    )


@router.get("/tasks", response_model=dict[str, str])
async def list_tasks() -> dict[str, str]:
    """List all available tasks that can be triggered manually."""
    return TASK_MAP
