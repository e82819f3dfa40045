"""
GET /runs/{run_id} and POST /runs/{run_id}/cancel
Progress polling and caller cancellation for harness runs.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from cosmos_harness.api.implement import RUNS, RunRecord

router = APIRouter()


class RunStatusResponse(BaseModel):
    run_id: str
    stage: str
    progress: float
    message: str
    status: str
    exit_code: Optional[int] = None
    error: str = ""
    result: Optional[Dict[str, Any]] = None


class CancelResponse(BaseModel):
    run_id: str
    cancelled: bool
    status: str


def _lookup(run_id: str) -> RunRecord:
    record = RUNS.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")
    return record


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str):
    record = _lookup(run_id)
    result = record.result
    return RunStatusResponse(
        run_id=record.run_id,
        stage=record.stage,
        progress=record.progress,
        message=record.message,
        status=record.status,
        exit_code=result.exit_code if result else None,
        error=record.error,
        result=result.model_dump(mode="json") if result else None,
    )


@router.post("/runs/{run_id}/cancel", response_model=CancelResponse)
async def cancel_run(run_id: str):
    """Request cancellation; takes effect at the run's next suspension point."""
    record = _lookup(run_id)
    if record.finished_at is not None:
        return CancelResponse(run_id=run_id, cancelled=False, status=record.status)
    record.cancel.cancel("cancelled via API")
    return CancelResponse(run_id=run_id, cancelled=True, status=record.status)
