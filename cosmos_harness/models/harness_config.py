"""
Harness Config Model
====================
Per-run options. Defaults come from the environment (see core/config.py) and
may be overridden by the caller (CLI --config file, HTTP request body).

Fields:
    max_auto_syntax_fix_loops          — regenerations allowed after a failed quick-check
    max_smart_escalations_per_attempt  — fix passes allowed for blocking findings
    reserve_independent_review_ms      — wall time kept back for the final review
    reserve_independent_review_cost_usd — USD kept back for the final review
    enable_quick_check_baseline        — quick-check the untouched files first; pre-existing issues are ignored
    require_independent_review_on_pass — acceptance needs a fresh, unbiased review of the final state
    blocking_severities                — severities that block acceptance (lower-cased)
    max_total_ms / max_total_cost_usd  — run deadline and cost cap
    generation_tier / review_tier / syntax_repair_tier — router tiers per stage
    review_after_failed_quick_check    — still run a (diagnostic) review when the quick-check stays red
    report_dir                         — write the JSON diagnostics report here when set
"""
from typing import Optional, Set

from pydantic import BaseModel, Field, field_validator

from cosmos_harness.core.config import (
    MAX_TOTAL_MS,
    MAX_TOTAL_COST_USD,
    RESERVE_INDEPENDENT_REVIEW_MS,
    RESERVE_INDEPENDENT_REVIEW_COST_USD,
)
from cosmos_harness.core.constants import DEFAULT_BLOCKING_SEVERITIES
from cosmos_harness.llm.router import ModelTier


class HarnessConfig(BaseModel):
    max_auto_syntax_fix_loops: int = Field(default=1, ge=0)
    max_smart_escalations_per_attempt: int = Field(default=2, ge=0)
    reserve_independent_review_ms: int = Field(default=RESERVE_INDEPENDENT_REVIEW_MS, ge=0)
    reserve_independent_review_cost_usd: float = Field(default=RESERVE_INDEPENDENT_REVIEW_COST_USD, ge=0)
    enable_quick_check_baseline: bool = False
    require_independent_review_on_pass: bool = True
    blocking_severities: Set[str] = Field(default_factory=lambda: set(DEFAULT_BLOCKING_SEVERITIES))

    max_total_ms: int = Field(default=MAX_TOTAL_MS, gt=0)
    max_total_cost_usd: float = Field(default=MAX_TOTAL_COST_USD, gt=0)
    generation_tier: ModelTier = ModelTier.SMART
    review_tier: ModelTier = ModelTier.BALANCED
    syntax_repair_tier: ModelTier = ModelTier.SPEED
    review_after_failed_quick_check: bool = False
    report_dir: Optional[str] = None

    @field_validator("blocking_severities", mode="before")
    @classmethod
    def _lower_severities(cls, value):
        if isinstance(value, str):
            value = [value]
        return {str(s).strip().lower() for s in value if str(s).strip()}
