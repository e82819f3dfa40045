"""
Run Diagnostics Model
=====================
Append-only record of everything a harness run did.

One AttemptRecord is appended per LLM call or stage outcome:
    index            — 1-based sequence number within the run
    stage            — generation / syntax_repair / review / fix / final_review / ...
    tier, model      — which router tier and concrete model served the call
    usage            — token/cost usage for this record (None = no LLM call)
    outcome          — short machine-friendly outcome ("ok", "schema_violation", ...)
    findings_summary — e.g. "2 blocking, 1 demoted, 3 total"
    error            — sanitised error text, if any
    schema_inlined   — schema was inlined into the system prompt (no JSON mode)
    repair_used      — the one-shot JSON repair call was made
    failover_used    — a Speed-tier failover candidate served the call
    elapsed_ms       — wall time spent in this step

Used by:
    - HarnessController to explain the terminal status
    - ResultsWriter to persist the optional JSON report
    - The HTTP status endpoint
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from cosmos_harness.core.constants import (
    EXIT_ACCEPTED,
    EXIT_REJECTED_BY_REVIEW,
    EXIT_BUDGET_EXHAUSTED,
    EXIT_UNRECOVERABLE,
    EXIT_ABORTED_BY_CALLER,
)
from .usage import Usage


class FinalizationStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_BY_REVIEW = "rejected_by_review"
    BUDGET_EXHAUSTED = "budget_exhausted"
    UNRECOVERABLE = "unrecoverable"
    ABORTED_BY_CALLER = "aborted_by_caller"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    FinalizationStatus.ACCEPTED: EXIT_ACCEPTED,
    FinalizationStatus.REJECTED_BY_REVIEW: EXIT_REJECTED_BY_REVIEW,
    FinalizationStatus.BUDGET_EXHAUSTED: EXIT_BUDGET_EXHAUSTED,
    FinalizationStatus.UNRECOVERABLE: EXIT_UNRECOVERABLE,
    FinalizationStatus.ABORTED_BY_CALLER: EXIT_ABORTED_BY_CALLER,
}


class AttemptRecord(BaseModel):
    index: int
    stage: str
    tier: str = ""
    model: str = ""
    usage: Optional[Usage] = None
    outcome: str = "ok"
    findings_summary: str = ""
    error: str = ""
    schema_inlined: bool = False
    repair_used: bool = False
    failover_used: bool = False
    elapsed_ms: int = 0


class FailReason(BaseModel):
    code: str
    gate: str
    message: str
    action: str = ""


class RunDiagnostics(BaseModel):
    run_id: str
    suggestion_fingerprint: str = ""
    records: List[AttemptRecord] = []
    status: Optional[FinalizationStatus] = None
    fail_reasons: List[FailReason] = []
    escalations_used: int = 0
    syntax_fix_loops_used: int = 0
    baseline_failures: List[str] = []
    demoted_findings: List[str] = []
    fix_failures: Dict[str, str] = {}
    independent_review_passed: bool = False
    total_ms: int = 0
    total_cost_usd: float = 0.0
    report_path: str = ""

    def append(self, record: AttemptRecord) -> AttemptRecord:
        """Append a record, assigning the next 1-based index."""
        record.index = len(self.records) + 1
        self.records.append(record)
        return record
