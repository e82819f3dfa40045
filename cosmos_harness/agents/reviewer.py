"""
Reviewer Agent
==============
Independent LLM review of the files the harness changed.

Review Input:
    - One (path, old, new) triple per touched file
    - old  — snapshot content captured before the first edit ("" for new files)
    - new  — the file as it is on disk right now ("" once deleted)
    - Only the latest content is reviewed; intermediate states never are

Iterations:
    - iteration 1  — initial (or independent) review, guided by the FixContext
    - iteration N  — "RE-REVIEW #N": verifies previously addressed findings and
                     looks for regressions introduced by the fix pass

The Reviewer does NOT:
    - Decide what blocks (that's finding_classifier's job)
    - Normalise finding paths (findings are returned as emitted)
    - Edit files (that's fix_agent's job)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from cosmos_harness.agents.llm_call import CallSink, call_and_record
from cosmos_harness.core.constants import STAGE_REVIEW
from cosmos_harness.llm.client import CallDiagnostics, CallLimits
from cosmos_harness.llm.prompts import build_review_prompt, review_system_prompt
from cosmos_harness.llm.router import ModelTier
from cosmos_harness.models.review_finding import ReviewFinding, ReviewResponse
from cosmos_harness.models.suggestion import FixContext
from cosmos_harness.models.usage import Usage
from cosmos_harness.services.edit_applier import EditApplier, read_text_exact
from cosmos_harness.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class ReviewOutcome:
    findings: List[ReviewFinding]
    summary: str
    usage: Usage
    diagnostics: Optional[CallDiagnostics] = None
    files: List[str] = field(default_factory=list)


class Reviewer:
    """
    Runs structured reviews through the LLM client.

    Parameters
    ----------
    client : LLMClient
        Structured client (anything exposing ``call_structured``).
    """

    def __init__(self, client) -> None:
        self.client = client

    def collect_review_files(self, applier: EditApplier, files: Sequence[str]) -> List[Tuple[str, str, str]]:
        """Build (path, old, new) triples; files that never existed are skipped."""
        triples: List[Tuple[str, str, str]] = []
        seen = set()
        for requested in files:
            rel, abs_path = applier.resolve(requested)
            if rel in seen:
                continue
            seen.add(rel)
            old = applier.old_content(rel)
            new = read_text_exact(abs_path)
            if new is None and not old:
                continue
            triples.append((rel, old, new or ""))
        return triples

    async def review(
        self,
        applier: EditApplier,
        fix_context: Optional[FixContext],
        files: Sequence[str],
        iteration: int = 1,
        fixed_titles: Sequence[str] = (),
        tier: ModelTier = ModelTier.BALANCED,
        limits: Optional[CallLimits] = None,
        cancel: Optional[CancellationToken] = None,
        on_call: Optional[CallSink] = None,
        stage: str = STAGE_REVIEW,
    ) -> ReviewOutcome:
        """
        Review the current state of ``files``.

        Parameters
        ----------
        applier : EditApplier
            Source of snapshots and sandbox path resolution.
        fix_context : FixContext or None
            What the change was meant to achieve.
        files : sequence of str
            Sandbox-relative paths to review.
        iteration : int
            1 for a fresh review, >1 for re-reviews after fix passes.
        fixed_titles : sequence of str
            Finding titles addressed so far (re-reviews only).
        tier : ModelTier
            Router tier for the review call.

        Returns
        -------
        ReviewOutcome
            Findings as emitted, the review summary, and call usage.

        Raises
        ------
        LLMError
            When the review call fails.
        RunCancelled
            When cancelled before reading files or calling the model.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        triples = await asyncio.to_thread(self.collect_review_files, applier, files)
        if not triples:
            logger.info("Nothing to review (no changed files)")
            return ReviewOutcome(findings=[], summary="No changes to review", usage=Usage())

        system = review_system_prompt(iteration, fixed_titles, fix_context)
        user = build_review_prompt(triples)
        logger.info("Review #%d of %d file(s) on %s tier", iteration, len(triples), tier.value)

        result = await call_and_record(
            self.client, stage, tier, system, user, ReviewResponse,
            limits=limits, cancel=cancel, on_call=on_call,
        )
        response: ReviewResponse = result.data
        logger.info("Review #%d: %d finding(s) — %s", iteration, len(response.findings), response.summary)
        return ReviewOutcome(
            findings=list(response.findings),
            summary=response.summary or "Review completed",
            usage=result.usage,
            diagnostics=result.diagnostics,
            files=[path for path, _, _ in triples],
        )
