"""
Implementation Run Result
=========================
Outbound record produced by HarnessController.run().
"""
from typing import List

from pydantic import BaseModel

from .fix_result import EditKind
from .review_finding import ReviewFinding
from .run_diagnostics import FinalizationStatus, RunDiagnostics
from .usage import Usage


class AppliedFileRecord(BaseModel):
    path: str
    edit_kind: EditKind


class ImplementationRunResult(BaseModel):
    status: FinalizationStatus
    applied_files: List[AppliedFileRecord] = []
    diagnostics: RunDiagnostics
    usage_total: Usage = Usage()
    findings_final: List[ReviewFinding] = []
    description: str = ""

    @property
    def exit_code(self) -> int:
        return self.status.exit_code
