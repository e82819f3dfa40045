"""
Fail Reasons
============
Standardised, machine-readable codes for why a run did not end Accepted.

Each FailReason recorded in RunDiagnostics carries one of these codes, the
gate that produced it, a normalised human message, and a default next action
for the caller.
"""
import re
from typing import Optional

from cosmos_harness.models.run_diagnostics import FailReason


# ---------------------------------------------------------------------------
# Fail Reason Codes
# ---------------------------------------------------------------------------
LLM_UNAVAILABLE = "llm_unavailable"
GENERATION_FAILED = "generation_failed"
SCOPE_VIOLATION = "scope_violation"
WRITE_FAILED = "write_failed"
QUICK_CHECK_FAILED = "quick_check_failed"
BLOCKING_REVIEW_RESIDUAL = "blocking_review_residual"
BUDGET_EXCEEDED = "budget_exceeded"
CANCELLED = "cancelled"
UNKNOWN = "unknown"

# All valid codes (for validation)
ALL_FAIL_REASONS = frozenset({
    LLM_UNAVAILABLE,
    GENERATION_FAILED,
    SCOPE_VIOLATION,
    WRITE_FAILED,
    QUICK_CHECK_FAILED,
    BLOCKING_REVIEW_RESIDUAL,
    BUDGET_EXCEEDED,
    CANCELLED,
    UNKNOWN,
})

_DEFAULT_ACTIONS = {
    LLM_UNAVAILABLE: "configure API key",
    GENERATION_FAILED: "retry later or pick a different suggestion",
    SCOPE_VIOLATION: "regenerate within sandbox",
    WRITE_FAILED: "check sandbox permissions",
    QUICK_CHECK_FAILED: "inspect syntax",
    BLOCKING_REVIEW_RESIDUAL: "manual review required",
    BUDGET_EXCEEDED: "raise budget",
    CANCELLED: "rerun when ready",
    UNKNOWN: "inspect diagnostics",
}

MAX_FAIL_REASON_MESSAGE_CHARS = 240
_WHITESPACE_RE = re.compile(r"\s+")


def default_action_for_fail_reason(code: str) -> str:
    """
    Map a fail reason code to the suggested next action.

    Parameters
    ----------
    code : str
        One of the fail reason constants; unrecognised codes map like UNKNOWN.

    Returns
    -------
    str
        Short imperative action for the caller.
    """
    return _DEFAULT_ACTIONS.get(code, _DEFAULT_ACTIONS[UNKNOWN])


def normalize_fail_reason_message(message: str) -> str:
    """Collapse whitespace and cap the length of a fail reason message."""
    collapsed = _WHITESPACE_RE.sub(" ", message or "").strip()
    if len(collapsed) <= MAX_FAIL_REASON_MESSAGE_CHARS:
        return collapsed
    return collapsed[: MAX_FAIL_REASON_MESSAGE_CHARS - 3].rstrip() + "..."


def make_fail_reason(code: str, gate: str, message: str, action: Optional[str] = None) -> FailReason:
    if code not in ALL_FAIL_REASONS:
        code = UNKNOWN
    return FailReason(
        code=code,
        gate=gate,
        message=normalize_fail_reason_message(message),
        action=action or default_action_for_fail_reason(code),
    )
