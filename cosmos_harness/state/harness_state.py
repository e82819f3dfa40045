"""
Harness State
TypedDict holding the mutable state of ONE harness run.
Single writer: only the HarnessController touches it, one stage at a time.
"""
import time
from enum import Enum
from typing import List, Optional, TypedDict

from cosmos_harness.models.fix_result import AppliedFix
from cosmos_harness.models.review_finding import ReviewFinding
from cosmos_harness.services.quick_check import QuickCheckResult


class HarnessStage(str, Enum):
    START = "start"
    GENERATING = "generating"
    APPLYING = "applying"
    QUICK_CHECKING = "quick_checking"
    REVIEWING = "reviewing"
    FIXING_BLOCKING = "fixing_blocking"
    FINALIZING = "finalizing"
    DONE = "done"


# Coarse progress fraction reported on entering each stage
STAGE_PROGRESS = {
    HarnessStage.START: 0.0,
    HarnessStage.GENERATING: 0.1,
    HarnessStage.APPLYING: 0.3,
    HarnessStage.QUICK_CHECKING: 0.4,
    HarnessStage.REVIEWING: 0.55,
    HarnessStage.FIXING_BLOCKING: 0.7,
    HarnessStage.FINALIZING: 0.9,
    HarnessStage.DONE: 1.0,
}


class HarnessState(TypedDict):
    run_id: str
    sandbox_root: str
    stage: HarnessStage
    start_time: float           # time.time() at start

    # Generation
    description: str
    feedback: List[str]         # quick-check reasons for the next syntax repair
    repair_guidance: str        # schema repair guidance for a generation re-entry
    generation_reentries: int
    last_applied: List[AppliedFix]

    # Counters
    syntax_fix_loops_used: int
    escalations_used: int
    state_version: int          # bumped whenever edits land on disk

    # Quick-check
    baseline: Optional[QuickCheckResult]
    last_quick_check: Optional[QuickCheckResult]
    diagnostic_review: bool     # review runs although the quick-check stayed red

    # Review
    review_iteration: int
    fixed_titles: List[str]
    last_findings: List[ReviewFinding]
    last_blocking: List[ReviewFinding]
    fresh_review_version: int   # state_version seen by the latest iteration-1 review (-1 = none)
    last_review_fresh: bool     # the most recent review was an iteration-1 review


def new_harness_state(run_id: str, sandbox_root: str) -> HarnessState:
    return HarnessState(
        run_id=run_id,
        sandbox_root=sandbox_root,
        stage=HarnessStage.START,
        start_time=time.time(),
        description="",
        feedback=[],
        repair_guidance="",
        generation_reentries=0,
        last_applied=[],
        syntax_fix_loops_used=0,
        escalations_used=0,
        state_version=0,
        baseline=None,
        last_quick_check=None,
        diagnostic_review=False,
        review_iteration=0,
        fixed_titles=[],
        last_findings=[],
        last_blocking=[],
        fresh_review_version=-1,
        last_review_fresh=False,
    )
