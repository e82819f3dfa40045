"""
Recorded LLM Calls
==================
Single entry point used by the reviewer and fix agent for structured calls.

Every call:
    1. checks cancellation (the call is a suspension point)
    2. runs client.call_structured
    3. emits exactly ONE AttemptRecord through ``on_call`` — on success AND on
       failure, so the usage of failed calls is still accounted
"""
import logging
import time
from typing import Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from cosmos_harness.core.constants import MAX_ERROR_SNIPPET_CHARS
from cosmos_harness.llm.client import CallLimits, StructuredResult
from cosmos_harness.llm.errors import LLMError
from cosmos_harness.llm.parse import truncate_str
from cosmos_harness.llm.router import ModelTier
from cosmos_harness.models.run_diagnostics import AttemptRecord
from cosmos_harness.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

CallSink = Callable[[AttemptRecord], None]


async def call_and_record(
    client,
    stage: str,
    tier: ModelTier,
    system: str,
    user: str,
    response_model: Type[T],
    limits: Optional[CallLimits] = None,
    cancel: Optional[CancellationToken] = None,
    on_call: Optional[CallSink] = None,
) -> StructuredResult[T]:
    """
    Make one structured call and report it.

    Raises
    ------
    RunCancelled
        Cancellation was requested before the call.
    LLMError
        Any client error, after its AttemptRecord was emitted.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    started = time.monotonic()
    try:
        result = await client.call_structured(tier, system, user, response_model, limits)
    except LLMError as exc:
        elapsed = int((time.monotonic() - started) * 1000)
        logger.warning("%s call failed on %s: %s", stage, exc.model or tier.value, exc.message)
        _emit(on_call, AttemptRecord(
            index=0,
            stage=stage,
            tier=tier.value,
            model=exc.model,
            usage=exc.usage,
            outcome=exc.kind,
            error=truncate_str(exc.message, MAX_ERROR_SNIPPET_CHARS),
            elapsed_ms=elapsed,
        ))
        raise

    diag = result.diagnostics
    _emit(on_call, AttemptRecord(
        index=0,
        stage=stage,
        tier=diag.tier.value,
        model=diag.model,
        usage=result.usage,
        schema_inlined=diag.schema_inlined,
        repair_used=diag.repair_used,
        failover_used=diag.failover_used,
        elapsed_ms=diag.elapsed_ms or int((time.monotonic() - started) * 1000),
    ))
    return result


def _emit(on_call: Optional[CallSink], record: AttemptRecord) -> None:
    if on_call is not None:
        on_call(record)
