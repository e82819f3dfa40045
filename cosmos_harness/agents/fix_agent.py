"""
Fix Agent
=========
Proposes code changes through the LLM and hands them to the EditApplier.

Two entry points:
    generate()      — initial generation and syntax repairs: one multi-file
                      GenerationResponse for the whole suggestion
    fix_findings()  — focused fix pass: one FixResponse per file that has
                      blocking review findings

Core Philosophy:
    - Implement / fix only what was asked
    - Minimum diff only
    - Preserve comments
    - Do not refactor unrelated code

Edit Repair:
    An edit list that cannot be applied (anchor not found, ambiguous,
    placeholder) earns ONE repair prompt carrying targeted guidance. A second
    failure is final.

Large Files:
    Files over the prompt limit are sent as an excerpt around the first
    referenced line. Excerpts must be fixed with ``edits``; a whole-file
    ``replace`` of an excerpt would drop the rest of the file and is rejected.

The FixAgent does NOT:
    - Decide whether another fix pass is allowed (that's the controller's job)
    - Judge the result (that's the reviewer's job)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from cosmos_harness.agents.llm_call import CallSink, call_and_record
from cosmos_harness.core.constants import (
    MAX_FILE_PROMPT_CHARS,
    STAGE_FIX,
    STAGE_GENERATION,
    STAGE_GENERATION_REPAIR,
)
from cosmos_harness.llm.client import CallLimits
from cosmos_harness.llm.errors import SchemaViolationError
from cosmos_harness.llm.parse import truncate_content, truncate_content_around_line
from cosmos_harness.llm.prompts import (
    FIX_SYSTEM_PROMPT,
    GENERATION_SYSTEM_PROMPT,
    build_fix_prompt,
    build_generation_prompt,
)
from cosmos_harness.llm.router import ModelTier
from cosmos_harness.models.fix_result import (
    AppliedFix,
    FixResponse,
    GenerationResponse,
    ReplaceFileChange,
)
from cosmos_harness.models.review_finding import ReviewFinding
from cosmos_harness.models.suggestion import FixContext, ValidatedSuggestion
from cosmos_harness.models.usage import Usage, merge_usage
from cosmos_harness.services.budget_manager import BudgetRefused
from cosmos_harness.services.edit_applier import EditApplier, PreparedChange
from cosmos_harness.utils.cancellation import CancellationToken
from cosmos_harness.utils.edit_ops import (
    EditApplyError,
    format_edit_apply_repair_guidance,
    is_retryable_edit_apply_error,
)
from cosmos_harness.utils.path_utils import ordered_union

logger = logging.getLogger(__name__)

BudgetGate = Callable[[str], bool]


@dataclass
class GenerationOutcome:
    description: str
    prepared: List[PreparedChange]
    usage: Optional[Usage] = None
    calls: int = 0


@dataclass
class FixPassOutcome:
    applied: List[AppliedFix] = field(default_factory=list)
    fixed_titles: List[str] = field(default_factory=list)
    failed_files: Dict[str, str] = field(default_factory=dict)
    usage: Optional[Usage] = None
    stopped_by_budget: bool = False


# ---------------------------------------------------------------------------
# Fix Agent
# ---------------------------------------------------------------------------
class FixAgent:
    """
    Generates code changes from a suggestion or from review findings.

    Parameters
    ----------
    client : LLMClient
        Structured client (anything exposing ``call_structured``).
    max_file_chars : int
        Prompt budget per file before excerpting (default: 20000).
    """

    def __init__(self, client, max_file_chars: int = MAX_FILE_PROMPT_CHARS) -> None:
        self.client = client
        self.max_file_chars = max_file_chars

    # -------------------------------------------------------------------
    # Initial generation / syntax repair
    # -------------------------------------------------------------------
    async def generate(
        self,
        applier: EditApplier,
        suggestion: ValidatedSuggestion,
        tier: ModelTier = ModelTier.SMART,
        stage: str = STAGE_GENERATION,
        feedback: Sequence[str] = (),
        repair_guidance: str = "",
        limits: Optional[CallLimits] = None,
        cancel: Optional[CancellationToken] = None,
        on_call: Optional[CallSink] = None,
        may_spend: Optional[BudgetGate] = None,
    ) -> GenerationOutcome:
        """
        Ask the model for the change set and prepare it (no writes).

        Parameters
        ----------
        applier : EditApplier
            Sandbox applier; provides current contents and path checks.
        suggestion : ValidatedSuggestion
            The change to implement.
        tier : ModelTier
            Router tier for the call.
        stage : str
            Stage name recorded in diagnostics (generation / syntax_repair / ...).
        feedback : sequence of str
            Quick-check reasons from the previous attempt.
        repair_guidance : str
            Guidance after an unusable previous response.
        may_spend : callable or None
            Budget gate consulted before the edit-repair call.

        Returns
        -------
        GenerationOutcome
            Description and prepared changes, ready for commit.

        Raises
        ------
        LLMError
            The generation call failed.
        PathEscapeError
            A change targets a path outside the sandbox (nothing was written).
        EditApplyError
            Edits could not be applied, even after the repair prompt.
        BudgetRefused
            The edit-repair call did not fit the budget.
        """
        paths = ordered_union(suggestion.files, applier.touched_paths())
        if cancel is not None:
            cancel.raise_if_cancelled()
        contents = await asyncio.to_thread(self._read_contents, applier, paths)

        usage: Optional[Usage] = None
        calls = 0
        guidance = repair_guidance
        call_stage = stage
        while True:
            user = build_generation_prompt(suggestion, contents, feedback, guidance)
            result = await call_and_record(
                self.client, call_stage, tier, GENERATION_SYSTEM_PROMPT, user, GenerationResponse,
                limits=limits, cancel=cancel, on_call=on_call,
            )
            calls += 1
            usage = merge_usage(usage, result.usage)
            response: GenerationResponse = result.data

            try:
                prepared = applier.prepare(response.files)
            except EditApplyError as exc:
                if calls > 1 or not is_retryable_edit_apply_error(exc.message):
                    raise
                if may_spend is not None and not may_spend(STAGE_GENERATION_REPAIR):
                    raise BudgetRefused(STAGE_GENERATION_REPAIR) from exc
                logger.warning("Generated edits could not be applied, requesting repair: %s", exc.message)
                guidance = format_edit_apply_repair_guidance(exc.message, "file contents above")
                call_stage = STAGE_GENERATION_REPAIR
                continue

            logger.info(
                "Generation prepared %d change(s) in %d call(s): %s",
                len(prepared), calls, response.description or "(no description)",
            )
            return GenerationOutcome(
                description=response.description, prepared=prepared, usage=usage, calls=calls,
            )

    @staticmethod
    def _read_contents(applier: EditApplier, paths: Sequence[str]) -> Dict[str, Optional[str]]:
        return {applier.resolve(p)[0]: applier.read_current(p) for p in paths}

    # -------------------------------------------------------------------
    # Fix pass
    # -------------------------------------------------------------------
    async def fix_findings(
        self,
        grouped: Dict[str, List[ReviewFinding]],
        fix_context: Optional[FixContext],
        applier: EditApplier,
        tier: ModelTier = ModelTier.SMART,
        limits: Optional[CallLimits] = None,
        cancel: Optional[CancellationToken] = None,
        on_call: Optional[CallSink] = None,
        may_spend: Optional[BudgetGate] = None,
    ) -> FixPassOutcome:
        """
        Fix blocking findings one file at a time, applying each fix on success.

        A file whose response stays unusable is recorded in ``failed_files``
        and the pass moves on. Transport and content-filter errors abort the
        whole pass.

        Returns
        -------
        FixPassOutcome
            Applied fixes, addressed titles, per-file failures, usage.
        """
        outcome = FixPassOutcome()
        for path, findings in grouped.items():
            if may_spend is not None and not may_spend(STAGE_FIX):
                logger.info("Budget exhausted mid fix pass; %s left unfixed", path)
                outcome.stopped_by_budget = True
                break
            if cancel is not None:
                cancel.raise_if_cancelled()
            current = await asyncio.to_thread(applier.read_current, path)
            if current is None:
                outcome.failed_files[path] = "file no longer exists"
                continue

            code_block, is_excerpt = self._code_block(current, findings)
            try:
                applied = await self._fix_file(
                    path, code_block, is_excerpt, findings, fix_context, applier,
                    tier, limits, cancel, on_call, may_spend, outcome,
                )
            except (SchemaViolationError, EditApplyError) as exc:
                message = exc.message
                logger.warning("Fix for %s failed: %s", path, message)
                outcome.failed_files[path] = message
                continue
            except BudgetRefused:
                outcome.stopped_by_budget = True
                break

            outcome.applied.extend(applied)
            outcome.fixed_titles.extend(f.title for f in findings)

        logger.info(
            "Fix pass: %d file(s) fixed, %d failed%s",
            len(outcome.applied), len(outcome.failed_files),
            " (stopped by budget)" if outcome.stopped_by_budget else "",
        )
        return outcome

    def _code_block(self, content: str, findings: Sequence[ReviewFinding]) -> tuple[str, bool]:
        """Full content, or an excerpt around the first referenced line."""
        if len(content) <= self.max_file_chars:
            return content, False
        line = next((f.line for f in findings if f.line), None)
        excerpt = truncate_content_around_line(content, line, self.max_file_chars) if line else None
        if excerpt is None:
            excerpt = truncate_content(content, self.max_file_chars)
        return excerpt, True

    async def _fix_file(
        self,
        path: str,
        code_block: str,
        is_excerpt: bool,
        findings: Sequence[ReviewFinding],
        fix_context: Optional[FixContext],
        applier: EditApplier,
        tier: ModelTier,
        limits: Optional[CallLimits],
        cancel: Optional[CancellationToken],
        on_call: Optional[CallSink],
        may_spend: Optional[BudgetGate],
        outcome: FixPassOutcome,
    ) -> List[AppliedFix]:
        label = "excerpt above" if is_excerpt else "code block above"
        guidance = ""
        for attempt in (1, 2):
            user = build_fix_prompt(path, code_block, is_excerpt, findings, fix_context, guidance)
            result = await call_and_record(
                self.client, STAGE_FIX, tier, FIX_SYSTEM_PROMPT, user, FixResponse,
                limits=limits, cancel=cancel, on_call=on_call,
            )
            outcome.usage = merge_usage(outcome.usage, result.usage)
            # Single-file pass: the change always targets the file under review
            change = result.data.change.model_copy(update={"path": path})

            try:
                if is_excerpt and isinstance(change, ReplaceFileChange):
                    raise EditApplyError(
                        f"Whole-file replace is not allowed for the truncated excerpt of {path}; "
                        "old_string edits are required (no edits provided).",
                        path=path,
                    )
                prepared = applier.prepare([change])
            except EditApplyError as exc:
                if attempt == 2 or not is_retryable_edit_apply_error(exc.message):
                    raise
                if may_spend is not None and not may_spend(STAGE_FIX):
                    raise BudgetRefused(STAGE_FIX) from exc
                guidance = format_edit_apply_repair_guidance(exc.message, label)
                continue

            return await applier.commit(prepared, cancel)
        return []
