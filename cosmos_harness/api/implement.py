"""
POST /implement
Accepts a sandbox root and a validated suggestion, starts a harness run as a
background task, and returns the run_id for polling via GET /runs/{run_id}.
"""
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from cosmos_harness.agents.orchestrator import HarnessController
from cosmos_harness.core.config import MAX_RUNS, RUN_RETENTION_SECONDS
from cosmos_harness.llm.client import LLMClient
from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.run_result import ImplementationRunResult
from cosmos_harness.models.suggestion import FixContext, ValidatedSuggestion
from cosmos_harness.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Run registry (in-process; one entry per started run)
# ---------------------------------------------------------------------------
@dataclass
class RunRecord:
    run_id: str
    sandbox_root: str
    cancel: CancellationToken = field(default_factory=CancellationToken)
    stage: str = "queued"
    progress: float = 0.0
    message: str = ""
    status: str = "running"          # running / <FinalizationStatus> / error
    result: Optional[ImplementationRunResult] = None
    error: str = ""
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def on_progress(self, stage: str, fraction: float, message: str) -> None:
        self.stage = stage
        self.progress = fraction
        self.message = message


RUNS: Dict[str, RunRecord] = {}


def evict_finished_runs(now: Optional[float] = None) -> int:
    """
    Drop finished runs older than RUN_RETENTION_SECONDS, then the oldest
    finished runs while the registry is over MAX_RUNS. Running entries are
    never evicted. Returns the number of records removed.
    """
    now = time.time() if now is None else now
    finished = sorted(
        (record for record in RUNS.values() if record.finished_at is not None),
        key=lambda record: record.finished_at,
    )
    evicted = 0
    for record in finished:
        expired = now - record.finished_at > RUN_RETENTION_SECONDS
        if not expired and len(RUNS) < MAX_RUNS:
            break
        del RUNS[record.run_id]
        evicted += 1
    if evicted:
        logger.info("Evicted %d finished run(s); %d remain", evicted, len(RUNS))
    return evicted


_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Shared LLM client (one HTTP pool for all runs)."""
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


async def close_llm_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class ImplementRequest(BaseModel):
    sandbox_root: str
    suggestion: ValidatedSuggestion
    fix_context: Optional[FixContext] = None
    config: Optional[HarnessConfig] = None


class ImplementResponse(BaseModel):
    run_id: str
    status: str


# ---------------------------------------------------------------------------
# Background run
# ---------------------------------------------------------------------------
async def execute_run(record: RunRecord, request: ImplementRequest, client) -> None:
    controller = HarnessController(client, config=request.config or HarnessConfig())
    try:
        result = await controller.run(
            record.sandbox_root,
            request.suggestion,
            fix_context=request.fix_context,
            cancel=record.cancel,
            on_progress=record.on_progress,
            run_id=record.run_id,
        )
    except Exception as exc:
        logger.error("[%s] Harness run crashed: %s", record.run_id, exc, exc_info=True)
        record.status = "error"
        record.error = str(exc)
    else:
        record.result = result
        record.status = result.status.value
    finally:
        record.finished_at = time.time()


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.post("/implement", response_model=ImplementResponse, status_code=202)
async def implement(
    request: ImplementRequest,
    background_tasks: BackgroundTasks,
    client: LLMClient = Depends(get_llm_client),
):
    """Start a harness run for one validated suggestion."""
    sandbox_root = os.path.abspath(request.sandbox_root)
    if not os.path.isdir(sandbox_root):
        raise HTTPException(status_code=400, detail=f"Sandbox root does not exist: {request.sandbox_root}")

    evict_finished_runs()
    run_id = uuid.uuid4().hex[:12]
    record = RunRecord(run_id=run_id, sandbox_root=sandbox_root)
    RUNS[run_id] = record
    logger.info("[%s] Queued run for suggestion %s in %s", run_id, request.suggestion.fingerprint, sandbox_root)

    background_tasks.add_task(execute_run, record, request, client)
    return ImplementResponse(run_id=run_id, status=record.status)
