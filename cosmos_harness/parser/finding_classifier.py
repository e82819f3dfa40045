"""
Finding Classifier
==================
Deterministic post-processing of reviewer findings.

NO LLM ALLOWED HERE. Everything in this module is a pure function of its
inputs so the harness can explain exactly why a finding did or did not
trigger a fix pass.

Blocking Rule:
    recommended AND lower(severity) in blocking_severities
    (unknown severity strings never block)

False-Positive Filter (intentionally narrow):
    Reviewers only see the changed files, so they regularly flag symbols as
    "not imported" / "undefined" when the import lives elsewhere. Such titles
    are demoted to informational:
        - contains "missing import", "not imported", or "unresolved import"
        - contains a backtick AND "undefined" (``"`foo` undefined"``, but not
          "undefined behavior")
    Titles like "undeclared" or "no such symbol" are NOT demoted.

Path Resolution (ordered, first hit wins):
    1. exact match after backslash → slash
    2. a candidate that is a suffix of the finding path
    3. the unique candidate sharing the basename
    4. otherwise the finding is dropped
"""
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from cosmos_harness.core.constants import DEFAULT_BLOCKING_SEVERITIES
from cosmos_harness.models.review_finding import ReviewFinding

logger = logging.getLogger(__name__)

_IMPORT_FP_MARKERS = ("missing import", "not imported", "unresolved import")


# ---------------------------------------------------------------------------
# Blocking & false positives
# ---------------------------------------------------------------------------
def is_blocking(finding: ReviewFinding, blocking_severities: Iterable[str] = DEFAULT_BLOCKING_SEVERITIES) -> bool:
    severities = {s.lower() for s in blocking_severities}
    return finding.recommended and finding.severity.strip().lower() in severities


def blocking_findings(
    findings: Sequence[ReviewFinding],
    blocking_severities: Iterable[str] = DEFAULT_BLOCKING_SEVERITIES,
) -> List[ReviewFinding]:
    """
    Keep only findings that must be fixed before acceptance.

    Parameters
    ----------
    findings : sequence of ReviewFinding
        Findings as emitted by the reviewer.
    blocking_severities : iterable of str
        Severities that block (compared case-insensitively).

    Returns
    -------
    list of ReviewFinding
        Recommended findings whose severity is in the blocking set, in order.
    """
    severities = {s.lower() for s in blocking_severities}
    return [f for f in findings if f.recommended and f.severity.strip().lower() in severities]


def is_probable_compile_error_false_positive(title: str) -> bool:
    lowered = title.lower()
    if any(marker in lowered for marker in _IMPORT_FP_MARKERS):
        return True
    return "`" in title and "undefined" in lowered


@dataclass
class ClassifiedFindings:
    blocking: List[ReviewFinding] = field(default_factory=list)
    demoted: List[ReviewFinding] = field(default_factory=list)
    informational: List[ReviewFinding] = field(default_factory=list)

    def summary(self) -> str:
        total = len(self.blocking) + len(self.demoted) + len(self.informational)
        return f"{len(self.blocking)} blocking, {len(self.demoted)} demoted, {total} total"


def classify_findings(
    findings: Sequence[ReviewFinding],
    blocking_severities: Iterable[str] = DEFAULT_BLOCKING_SEVERITIES,
) -> ClassifiedFindings:
    """
    Split findings into blocking, demoted false positives, and informational.

    Demoted findings would have been blocking but match the compile-error
    false-positive heuristic; they never trigger a fix pass.
    """
    severities = {s.lower() for s in blocking_severities}
    result = ClassifiedFindings()
    for finding in findings:
        if not is_blocking(finding, severities):
            result.informational.append(finding)
        elif is_probable_compile_error_false_positive(finding.title):
            logger.info("Demoting probable false positive: %s", finding.title)
            result.demoted.append(finding)
        else:
            result.blocking.append(finding)
    return result


# ---------------------------------------------------------------------------
# Per-file grouping
# ---------------------------------------------------------------------------
def resolve_finding_file(file: str, candidates: Sequence[str]) -> Optional[str]:
    """Resolve a model-emitted path against ``candidates`` (see module docstring)."""
    normalized = file.strip().replace("\\", "/")
    if not normalized:
        return None
    forms = [(c, c.replace("\\", "/")) for c in candidates]

    for candidate, form in forms:
        if form == normalized:
            return candidate

    for candidate, form in forms:
        if form and normalized.endswith(form):
            return candidate

    basename = posixpath.basename(normalized)
    same_name = [c for c, form in forms if posixpath.basename(form) == basename]
    if len(same_name) == 1:
        return same_name[0]
    return None


def group_findings_by_file(
    findings: Sequence[ReviewFinding],
    candidates: Sequence[str],
) -> Dict[str, List[ReviewFinding]]:
    """
    Group findings by the candidate file they resolve to.

    Parameters
    ----------
    findings : sequence of ReviewFinding
        Findings to group (typically the blocking subset).
    candidates : sequence of str
        Candidate sandbox-relative paths, in stable order.

    Returns
    -------
    dict
        candidate path → findings, keys in first-resolution order.
        Unresolvable findings are dropped.
    """
    grouped: Dict[str, List[ReviewFinding]] = {}
    for finding in findings:
        path = resolve_finding_file(finding.file, candidates)
        if path is None:
            logger.info("Dropping finding with unresolvable file %r: %s", finding.file, finding.title)
            continue
        grouped.setdefault(path, []).append(finding)
    return grouped
