"""
Harness Controller
==================
The central state machine of the implementation harness.
Drives the Generate → Apply → Quick-Check → Review → Fix loop for ONE
validated suggestion until the change is accepted or a bound is hit.

States:
    START → GENERATING → APPLYING → QUICK_CHECKING → REVIEWING
          → FIXING_BLOCKING → (QUICK_CHECKING → REVIEWING)* → FINALIZING → DONE

Bounds:
    - max_auto_syntax_fix_loops          — regenerations after a red quick-check
    - max_smart_escalations_per_attempt  — fix passes for blocking findings
    - one generation re-entry after an unusable structured response
    - wall-time deadline and USD cap (BudgetManager), with a reserve kept
      for the mandatory final review

Acceptance:
    - Zero blocking findings from the latest review
    - Quick-check not failing
    - With require_independent_review_on_pass: a fresh iteration-1 review of
      the final state (no fix-history bias) also returns zero blocking. It is
      skipped only when the accepting review already was such a review of
      the identical state.

Terminal statuses:
    Accepted | RejectedByReview | BudgetExhausted | Unrecoverable | AbortedByCaller

Fault tolerance:
    - Every HarnessError is mapped to a terminal status with a FailReason;
      diagnostics are always emitted
    - Cancellation is honoured before every suspension point; nothing is
      rolled back implicitly
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from cosmos_harness.agents.fix_agent import FixAgent
from cosmos_harness.agents.reviewer import Reviewer
from cosmos_harness.core.constants import (
    ARROW,
    STAGE_APPLY,
    STAGE_FINAL_REVIEW,
    STAGE_FIX,
    STAGE_GENERATION,
    STAGE_GENERATION_REPAIR,
    STAGE_QUICK_CHECK,
    STAGE_REVIEW,
    STAGE_SYNTAX_REPAIR,
)
from cosmos_harness.core.errors import HarnessError
from cosmos_harness.llm.client import CallLimits
from cosmos_harness.llm.errors import LLMError, SchemaViolationError, TruncatedError
from cosmos_harness.llm.prompts import format_schema_repair_guidance
from cosmos_harness.llm.router import ModelRouter, ModelTier
from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.review_finding import ReviewFinding
from cosmos_harness.models.run_diagnostics import AttemptRecord, FinalizationStatus, RunDiagnostics
from cosmos_harness.models.run_result import AppliedFileRecord, ImplementationRunResult
from cosmos_harness.models.suggestion import FixContext, ValidatedSuggestion
from cosmos_harness.models.usage import Usage, merge_usage
from cosmos_harness.parser.finding_classifier import classify_findings, group_findings_by_file
from cosmos_harness.services.budget_manager import BudgetManager, BudgetRefused
from cosmos_harness.services.edit_applier import EditApplier, PreparedChange, WriteError
from cosmos_harness.services.quick_check import QuickCheckRunner
from cosmos_harness.services.results_writer import ResultsWriter
from cosmos_harness.state.harness_state import (
    STAGE_PROGRESS,
    HarnessStage,
    HarnessState,
    new_harness_state,
)
from cosmos_harness.utils import fail_reasons
from cosmos_harness.utils.cancellation import CancellationToken, RunCancelled
from cosmos_harness.utils.edit_ops import EditApplyError
from cosmos_harness.utils.path_utils import PathEscapeError, ordered_union

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float, str], None]


@dataclass
class _Run:
    """Everything owned by a single run (the controller itself is shared)."""
    state: HarnessState
    suggestion: ValidatedSuggestion
    fix_context: FixContext
    diagnostics: RunDiagnostics
    budget: BudgetManager
    cancel: CancellationToken
    on_progress: Optional[ProgressCallback]
    applier: Optional[EditApplier] = None
    pending: List[PreparedChange] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Harness Controller
# ---------------------------------------------------------------------------
class HarnessController:
    """
    Runs the implementation harness for validated suggestions.

    Parameters
    ----------
    client : LLMClient
        Structured LLM client; ``is_available()`` gates the run.
    router : ModelRouter or None
        Tier router (defaults to the client's router).
    config : HarnessConfig or None
        Bounds and budget (defaults from the environment).
    fix_agent, reviewer, quick_check : optional
        Collaborators, injectable for tests.
    results_writer : ResultsWriter or None
        Writes the JSON report when ``config.report_dir`` is set.
    clock : callable
        Monotonic clock used by the budget.
    """

    def __init__(
        self,
        client,
        router: Optional[ModelRouter] = None,
        config: Optional[HarnessConfig] = None,
        fix_agent: Optional[FixAgent] = None,
        reviewer: Optional[Reviewer] = None,
        quick_check: Optional[QuickCheckRunner] = None,
        results_writer: Optional[ResultsWriter] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.router = router or getattr(client, "router", None) or ModelRouter()
        self.config = config or HarnessConfig()
        self.fix_agent = fix_agent or FixAgent(client)
        self.reviewer = reviewer or Reviewer(client)
        self.quick_check = quick_check or QuickCheckRunner()
        self.results_writer = results_writer or ResultsWriter()
        self._clock = clock
        self._handlers: Dict[HarnessStage, Callable[[_Run], Awaitable[HarnessStage]]] = {
            HarnessStage.START: self._start,
            HarnessStage.GENERATING: self._generating,
            HarnessStage.APPLYING: self._applying,
            HarnessStage.QUICK_CHECKING: self._quick_checking,
            HarnessStage.REVIEWING: self._reviewing,
            HarnessStage.FIXING_BLOCKING: self._fixing_blocking,
            HarnessStage.FINALIZING: self._finalizing,
        }

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def run(
        self,
        sandbox_root: str,
        suggestion: ValidatedSuggestion,
        fix_context: Optional[FixContext] = None,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        run_id: Optional[str] = None,
        applier: Optional[EditApplier] = None,
    ) -> ImplementationRunResult:
        """
        Implement ``suggestion`` inside ``sandbox_root``.

        Parameters
        ----------
        sandbox_root : str
            Existing directory; every write stays beneath it.
        suggestion : ValidatedSuggestion
            The change to implement.
        fix_context : FixContext or None
            Reviewer guidance (derived from the suggestion when omitted).
        cancel : CancellationToken or None
            Caller-controlled cancellation.
        on_progress : callable or None
            ``(stage, fraction_0_1, message)`` progress callback.
        run_id : str or None
            Identifier for diagnostics and the report (generated when omitted).
        applier : EditApplier or None
            Pre-built applier for ``sandbox_root``; lets the caller roll back
            afterwards. Created by the run when omitted.

        Returns
        -------
        ImplementationRunResult
            Terminal status, applied files, diagnostics, total usage, and the
            findings of the latest review. Never raises for harness failures.
        """
        run_id = run_id or uuid.uuid4().hex[:12]
        run = _Run(
            state=new_harness_state(run_id, str(sandbox_root)),
            suggestion=suggestion,
            fix_context=fix_context or FixContext.from_suggestion(suggestion),
            diagnostics=RunDiagnostics(run_id=run_id, suggestion_fingerprint=suggestion.fingerprint),
            budget=BudgetManager(self.config, clock=self._clock),
            cancel=cancel or CancellationToken(),
            on_progress=on_progress,
            applier=applier,
        )
        logger.info("[%s] Harness run started for suggestion %s", run_id, suggestion.fingerprint)

        stage = HarnessStage.START
        while stage is not HarnessStage.DONE:
            run.state["stage"] = stage
            self._progress(run, stage, stage.value)
            try:
                run.cancel.raise_if_cancelled()
                next_stage = await self._handlers[stage](run)
            except RunCancelled as exc:
                next_stage = self._finish(
                    run, FinalizationStatus.ABORTED_BY_CALLER, fail_reasons.CANCELLED, stage.value, str(exc),
                )
            except HarnessError as exc:
                logger.error("[%s] Unexpected harness error in %s: %s", run_id, stage.value, exc)
                next_stage = self._finish(
                    run, FinalizationStatus.UNRECOVERABLE, fail_reasons.UNKNOWN, stage.value, str(exc),
                )
            except Exception as exc:
                logger.error("[%s] %s failed: %s", run_id, stage.value, exc, exc_info=True)
                next_stage = self._finish(
                    run, FinalizationStatus.UNRECOVERABLE, fail_reasons.UNKNOWN, stage.value,
                    f"{type(exc).__name__}: {exc}",
                )
            logger.info("[%s] %s %s %s", run_id, stage.value, ARROW, next_stage.value)
            stage = next_stage

        result = self._build_result(run)
        self._progress(run, HarnessStage.DONE, result.status.value)
        return result

    # -------------------------------------------------------------------
    # Stage handlers
    # -------------------------------------------------------------------
    async def _start(self, run: _Run) -> HarnessStage:
        if not self.client.is_available():
            return self._finish(
                run, FinalizationStatus.UNRECOVERABLE, fail_reasons.LLM_UNAVAILABLE, "start",
                "No valid LLM API key configured",
            )
        if run.applier is None:
            try:
                run.applier = EditApplier(run.state["sandbox_root"])
            except OSError as exc:
                return self._finish(
                    run, FinalizationStatus.UNRECOVERABLE, fail_reasons.WRITE_FAILED, "start",
                    f"Sandbox root is not usable: {exc}",
                )

        if self.config.enable_quick_check_baseline:
            try:
                contents = await asyncio.to_thread(self._read_baseline, run.applier, run.suggestion.files)
            except PathEscapeError as exc:
                return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.SCOPE_VIOLATION, "start", str(exc))
            except WriteError as exc:
                return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.WRITE_FAILED, "start", str(exc))
            baseline = self.quick_check.run(contents)
            run.state["baseline"] = baseline
            run.diagnostics.baseline_failures = baseline.reasons
            if baseline.issues:
                logger.info("[%s] Baseline has %d pre-existing issue(s)", run.state["run_id"], len(baseline.issues))
        return HarnessStage.GENERATING

    async def _generating(self, run: _Run) -> HarnessStage:
        state = run.state
        if state["feedback"]:
            stage_name = STAGE_SYNTAX_REPAIR
            tier = self.config.syntax_repair_tier
        else:
            stage_name = STAGE_GENERATION_REPAIR if state["repair_guidance"] else STAGE_GENERATION
            tier = self._generation_tier()

        if not run.budget.may_spend(stage_name):
            return self._finish(
                run, FinalizationStatus.BUDGET_EXHAUSTED, fail_reasons.BUDGET_EXCEEDED, stage_name,
                f"Budget too small for {stage_name}",
            )

        try:
            outcome = await self.fix_agent.generate(
                run.applier, run.suggestion,
                tier=tier,
                stage=stage_name,
                feedback=state["feedback"],
                repair_guidance=state["repair_guidance"],
                limits=self._limits(run),
                cancel=run.cancel,
                on_call=lambda record: self._record_call(run, record),
                may_spend=run.budget.may_spend,
            )
        except SchemaViolationError as exc:
            if state["generation_reentries"] < 1:
                state["generation_reentries"] += 1
                state["repair_guidance"] = format_schema_repair_guidance(
                    exc.message, truncated=isinstance(exc, TruncatedError),
                )
                logger.warning("[%s] Unusable generation (%s); re-entering once", state["run_id"], exc.kind)
                return HarnessStage.GENERATING
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, stage_name, exc.message)
        except LLMError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, stage_name, exc.message)
        except PathEscapeError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.SCOPE_VIOLATION, stage_name, str(exc))
        except EditApplyError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, stage_name, exc.message)
        except WriteError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.WRITE_FAILED, stage_name, str(exc))
        except BudgetRefused as exc:
            return self._budget_refused(run, exc.stage, fallback=FinalizationStatus.UNRECOVERABLE,
                                        fallback_code=fail_reasons.GENERATION_FAILED)

        logger.info(
            "[%s] %s: %d change(s) from %d call(s), $%.5f",
            state["run_id"], stage_name, len(outcome.prepared), outcome.calls,
            outcome.usage.cost_or_zero if outcome.usage else 0.0,
        )
        run.pending = outcome.prepared
        state["repair_guidance"] = ""
        state["feedback"] = []
        if outcome.description:
            state["description"] = outcome.description
        return HarnessStage.APPLYING

    async def _applying(self, run: _Run) -> HarnessStage:
        started = time.monotonic()
        try:
            applied = await run.applier.commit(run.pending, run.cancel)
        except WriteError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.WRITE_FAILED, STAGE_APPLY, str(exc))
        run.pending = []
        run.state["last_applied"] = applied
        run.state["state_version"] += 1
        run.diagnostics.append(AttemptRecord(
            index=0,
            stage=STAGE_APPLY,
            outcome=f"{len(applied)} file(s) applied",
            elapsed_ms=int((time.monotonic() - started) * 1000),
        ))
        return HarnessStage.QUICK_CHECKING

    async def _quick_checking(self, run: _Run) -> HarnessStage:
        state = run.state
        applier = run.applier
        expect_non_empty = [
            path for path, snap in applier.snapshots.items() if snap.old_content and snap.old_content.strip()
        ]
        result = self.quick_check.run(applier.current_contents(), expect_non_empty, state["baseline"])
        state["last_quick_check"] = result
        run.diagnostics.append(AttemptRecord(
            index=0,
            stage=STAGE_QUICK_CHECK,
            outcome=result.status.value,
            error="; ".join(result.reasons),
        ))
        if not result.failed:
            return HarnessStage.REVIEWING

        reasons = "; ".join(result.reasons)
        if state["syntax_fix_loops_used"] < self.config.max_auto_syntax_fix_loops:
            if run.budget.may_spend(STAGE_SYNTAX_REPAIR):
                state["syntax_fix_loops_used"] += 1
                run.diagnostics.syntax_fix_loops_used = state["syntax_fix_loops_used"]
                state["feedback"] = result.reasons
                logger.info(
                    "[%s] Quick-check failed, syntax repair %d/%d: %s",
                    state["run_id"], state["syntax_fix_loops_used"], self.config.max_auto_syntax_fix_loops, reasons,
                )
                return HarnessStage.GENERATING
            if not run.budget.reserve_available():
                return self._finish(
                    run, FinalizationStatus.BUDGET_EXHAUSTED, fail_reasons.BUDGET_EXCEEDED, STAGE_SYNTAX_REPAIR,
                    f"Budget exhausted before syntax repair; quick-check: {reasons}",
                )

        if self.config.review_after_failed_quick_check:
            state["diagnostic_review"] = True
            return HarnessStage.REVIEWING
        return self._finish(run, FinalizationStatus.REJECTED_BY_REVIEW, fail_reasons.QUICK_CHECK_FAILED, STAGE_QUICK_CHECK, reasons)

    async def _reviewing(self, run: _Run) -> HarnessStage:
        state = run.state
        if not run.budget.may_spend(STAGE_REVIEW):
            return self._finish(
                run, FinalizationStatus.BUDGET_EXHAUSTED, fail_reasons.BUDGET_EXCEEDED, STAGE_REVIEW,
                "Budget exhausted before review",
            )

        iteration = state["review_iteration"] + 1
        try:
            outcome = await self.reviewer.review(
                run.applier, run.fix_context, run.applier.touched_paths(),
                iteration=iteration,
                fixed_titles=state["fixed_titles"],
                tier=self.config.review_tier,
                limits=self._limits(run),
                cancel=run.cancel,
                on_call=lambda record: self._record_call(run, record),
                stage=STAGE_REVIEW,
            )
        except LLMError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, STAGE_REVIEW, exc.message)

        state["review_iteration"] = iteration
        state["last_review_fresh"] = iteration == 1
        if iteration == 1:
            state["fresh_review_version"] = state["state_version"]
        blocking = self._classify(run, outcome.findings)

        if state["diagnostic_review"]:
            return self._finish(
                run, FinalizationStatus.REJECTED_BY_REVIEW, fail_reasons.QUICK_CHECK_FAILED, STAGE_QUICK_CHECK,
                "; ".join(state["last_quick_check"].reasons),
            )
        if not blocking:
            return HarnessStage.FINALIZING
        return HarnessStage.FIXING_BLOCKING

    async def _fixing_blocking(self, run: _Run) -> HarnessStage:
        state = run.state
        blocking = state["last_blocking"]
        if state["escalations_used"] >= self.config.max_smart_escalations_per_attempt:
            return self._finish(
                run, FinalizationStatus.REJECTED_BY_REVIEW, fail_reasons.BLOCKING_REVIEW_RESIDUAL, STAGE_FIX,
                f"{len(blocking)} blocking finding(s) remain after {state['escalations_used']} fix pass(es): "
                + "; ".join(f.title for f in blocking),
            )
        if not run.budget.may_spend(STAGE_FIX):
            return self._budget_refused(run, STAGE_FIX, fallback=FinalizationStatus.REJECTED_BY_REVIEW,
                                        fallback_code=fail_reasons.BLOCKING_REVIEW_RESIDUAL)

        candidates = ordered_union(run.applier.touched_paths(), run.suggestion.files)
        grouped = group_findings_by_file(blocking, candidates)
        if not grouped:
            return self._finish(
                run, FinalizationStatus.REJECTED_BY_REVIEW, fail_reasons.BLOCKING_REVIEW_RESIDUAL, STAGE_FIX,
                "Blocking findings do not reference any changed file: " + "; ".join(f.title for f in blocking),
            )

        state["escalations_used"] += 1
        run.diagnostics.escalations_used = state["escalations_used"]
        logger.info(
            "[%s] Fix pass %d/%d over %d file(s)",
            state["run_id"], state["escalations_used"], self.config.max_smart_escalations_per_attempt, len(grouped),
        )
        try:
            outcome = await self.fix_agent.fix_findings(
                grouped, run.fix_context, run.applier,
                tier=self._generation_tier(),
                limits=self._limits(run),
                cancel=run.cancel,
                on_call=lambda record: self._record_call(run, record),
                may_spend=run.budget.may_spend,
            )
        except LLMError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, STAGE_FIX, exc.message)
        except PathEscapeError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.SCOPE_VIOLATION, STAGE_FIX, str(exc))
        except WriteError as exc:
            return self._finish(run, FinalizationStatus.UNRECOVERABLE, fail_reasons.WRITE_FAILED, STAGE_FIX, str(exc))

        state["fixed_titles"].extend(outcome.fixed_titles)
        run.diagnostics.fix_failures.update(outcome.failed_files)
        logger.info(
            "[%s] Fix pass %d: %d applied, %d failed, $%.5f",
            state["run_id"], state["escalations_used"], len(outcome.applied), len(outcome.failed_files),
            outcome.usage.cost_or_zero if outcome.usage else 0.0,
        )
        if outcome.applied:
            state["state_version"] += 1
        elif outcome.stopped_by_budget:
            return self._budget_refused(run, STAGE_FIX, fallback=FinalizationStatus.REJECTED_BY_REVIEW,
                                        fallback_code=fail_reasons.BLOCKING_REVIEW_RESIDUAL)
        return HarnessStage.QUICK_CHECKING

    async def _finalizing(self, run: _Run) -> HarnessStage:
        state = run.state
        if self.config.require_independent_review_on_pass:
            already_independent = (
                state["last_review_fresh"] and state["fresh_review_version"] == state["state_version"]
            )
            if not already_independent:
                if not run.budget.may_spend(STAGE_FINAL_REVIEW):
                    return self._finish(
                        run, FinalizationStatus.BUDGET_EXHAUSTED, fail_reasons.BUDGET_EXCEEDED, STAGE_FINAL_REVIEW,
                        "Budget exhausted before the independent final review",
                    )
                try:
                    outcome = await self.reviewer.review(
                        run.applier, run.fix_context, run.applier.touched_paths(),
                        iteration=1,
                        tier=self.config.review_tier,
                        limits=self._limits(run),
                        cancel=run.cancel,
                        on_call=lambda record: self._record_call(run, record),
                        stage=STAGE_FINAL_REVIEW,
                    )
                except LLMError as exc:
                    return self._finish(
                        run, FinalizationStatus.UNRECOVERABLE, fail_reasons.GENERATION_FAILED, STAGE_FINAL_REVIEW, exc.message,
                    )
                blocking = self._classify(run, outcome.findings)
                if blocking:
                    return self._finish(
                        run, FinalizationStatus.REJECTED_BY_REVIEW, fail_reasons.BLOCKING_REVIEW_RESIDUAL, STAGE_FINAL_REVIEW,
                        "Independent final review found blocking issues: " + "; ".join(f.title for f in blocking),
                    )
            run.diagnostics.independent_review_passed = True
        return self._finish(run, FinalizationStatus.ACCEPTED)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _read_baseline(applier: EditApplier, files: Sequence[str]) -> Dict[str, Optional[str]]:
        contents: Dict[str, Optional[str]] = {}
        for requested in files:
            rel, _ = applier.resolve(requested)
            contents[rel] = applier.read_current(rel)
        return contents

    def _generation_tier(self) -> ModelTier:
        tier = self.config.generation_tier
        if tier is ModelTier.SMART and self.router.is_degraded(ModelTier.SMART):
            logger.warning("Smart tier degraded; generating on balanced tier")
            return ModelTier.BALANCED
        return tier

    @staticmethod
    def _limits(run: _Run) -> CallLimits:
        return CallLimits(timeout_seconds=run.budget.timeout_for_next_call())

    def _record_call(self, run: _Run, record: AttemptRecord) -> None:
        run.diagnostics.append(record)
        run.budget.record(record.usage, record.elapsed_ms)

    def _classify(self, run: _Run, findings: Sequence[ReviewFinding]) -> List[ReviewFinding]:
        classified = classify_findings(findings, self.config.blocking_severities)
        run.state["last_findings"] = list(findings)
        run.state["last_blocking"] = classified.blocking
        run.diagnostics.demoted_findings.extend(f.title for f in classified.demoted)
        records = run.diagnostics.records
        if records and records[-1].stage in (STAGE_REVIEW, STAGE_FINAL_REVIEW):
            records[-1].findings_summary = classified.summary()
        return classified.blocking

    def _budget_refused(
        self,
        run: _Run,
        stage_name: str,
        fallback: FinalizationStatus,
        fallback_code: str,
    ) -> HarnessStage:
        """BudgetExhausted when even the reserve is gone, otherwise ``fallback``."""
        if not run.budget.reserve_available():
            return self._finish(
                run, FinalizationStatus.BUDGET_EXHAUSTED, fail_reasons.BUDGET_EXCEEDED, stage_name,
                f"Budget exhausted before {stage_name} (reserve insufficient)",
            )
        blocking = run.state["last_blocking"]
        detail = "; ".join(f.title for f in blocking) if blocking else "no further attempts affordable"
        return self._finish(run, fallback, fallback_code, stage_name, f"Budget refused {stage_name}: {detail}")

    def _finish(
        self,
        run: _Run,
        status: FinalizationStatus,
        code: Optional[str] = None,
        gate: str = "",
        message: str = "",
    ) -> HarnessStage:
        run.diagnostics.status = status
        if status is not FinalizationStatus.ACCEPTED:
            run.diagnostics.fail_reasons.append(
                fail_reasons.make_fail_reason(code or fail_reasons.UNKNOWN, gate, message or status.value)
            )
            logger.warning("[%s] Run ended %s at %s: %s", run.state["run_id"], status.value, gate, message)
        else:
            logger.info("[%s] Run accepted", run.state["run_id"])
        return HarnessStage.DONE

    def _progress(self, run: _Run, stage: HarnessStage, message: str) -> None:
        if run.on_progress is not None:
            run.on_progress(stage.value, STAGE_PROGRESS[stage], message)

    def _build_result(self, run: _Run) -> ImplementationRunResult:
        diagnostics = run.diagnostics
        usage_total: Optional[Usage] = None
        for record in diagnostics.records:
            usage_total = merge_usage(usage_total, record.usage)
        diagnostics.total_ms = run.budget.elapsed_ms
        diagnostics.total_cost_usd = run.budget.spent_cost_usd

        applied: List[AppliedFileRecord] = []
        if run.applier is not None:
            applied = [
                AppliedFileRecord(path=fix.path, edit_kind=fix.edit_kind)
                for fix in run.applier.applied_files()
            ]
        result = ImplementationRunResult(
            status=diagnostics.status or FinalizationStatus.UNRECOVERABLE,
            applied_files=applied,
            diagnostics=diagnostics,
            usage_total=usage_total or Usage(),
            findings_final=run.state["last_findings"],
            description=run.state["description"],
        )
        if self.config.report_dir:
            path = self.results_writer.write_report(result, self.config.report_dir)
            if path:
                diagnostics.report_path = path
        logger.info(
            "[%s] Finished %s: %d file(s), %d call record(s), $%.5f, %dms",
            run.state["run_id"], result.status.value, len(applied), len(diagnostics.records),
            diagnostics.total_cost_usd, diagnostics.total_ms,
        )
        return result
