"""
Harness Config Tests
"""
import pytest
from pydantic import ValidationError

from cosmos_harness.core.config import MAX_TOTAL_COST_USD, MAX_TOTAL_MS
from cosmos_harness.llm.router import ModelTier
from cosmos_harness.models.harness_config import HarnessConfig


def test_defaults():
    config = HarnessConfig()
    assert config.max_auto_syntax_fix_loops == 1
    assert config.max_smart_escalations_per_attempt == 2
    assert config.blocking_severities == {"high", "critical"}
    assert config.require_independent_review_on_pass is True
    assert config.review_after_failed_quick_check is False
    assert config.max_total_ms == MAX_TOTAL_MS
    assert config.max_total_cost_usd == MAX_TOTAL_COST_USD
    assert config.syntax_repair_tier is ModelTier.SPEED


def test_severities_are_lowercased_and_trimmed():
    config = HarnessConfig(blocking_severities=[" HIGH", "Medium", ""])
    assert config.blocking_severities == {"high", "medium"}


def test_single_severity_string_is_accepted():
    assert HarnessConfig(blocking_severities="Critical").blocking_severities == {"critical"}


def test_tiers_parse_from_strings():
    config = HarnessConfig.model_validate({"generation_tier": "balanced"})
    assert config.generation_tier is ModelTier.BALANCED


@pytest.mark.parametrize("field, value", [
    ("max_auto_syntax_fix_loops", -1),
    ("max_smart_escalations_per_attempt", -2),
    ("max_total_ms", 0),
    ("max_total_cost_usd", 0),
    ("reserve_independent_review_cost_usd", -0.1),
])
def test_invalid_limits_rejected(field, value):
    with pytest.raises(ValidationError):
        HarnessConfig(**{field: value})
