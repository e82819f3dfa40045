"""
Budget Manager Tests
====================
Deterministic clock; no sleeping.
"""
import pytest

from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.usage import Usage
from cosmos_harness.services.budget_manager import BudgetManager, SpendEstimate


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _budget(clock=None, **overrides):
    values = dict(
        max_total_ms=60_000,
        max_total_cost_usd=0.05,
        reserve_independent_review_ms=8000,
        reserve_independent_review_cost_usd=0.002,
    )
    values.update(overrides)
    return BudgetManager(HarnessConfig(**values), clock=clock or FakeClock())


def test_min_buffers_are_clamped():
    assert _budget(max_total_ms=60_000).min_ms_buffer == 6000
    assert _budget(max_total_ms=4000).min_ms_buffer == 1200
    assert _budget(max_total_ms=20_000).min_ms_buffer == 3000
    assert _budget(max_total_cost_usd=1.0).min_cost_buffer == pytest.approx(0.003)
    assert _budget(max_total_cost_usd=0.001).min_cost_buffer == pytest.approx(0.00015)
    assert _budget(max_total_cost_usd=0.05).min_cost_buffer == pytest.approx(0.001)


def test_estimate_uses_observed_average_when_larger():
    budget = _budget()
    assert budget.estimate_for("fix") == SpendEstimate(ms=6000, cost_usd=pytest.approx(0.001))
    budget.record(Usage(cost_usd=0.01), elapsed_ms=10_000)
    budget.record(Usage(cost_usd=0.02), elapsed_ms=20_000)
    estimate = budget.estimate_for("fix")
    assert estimate.ms == 15_000
    assert estimate.cost_usd == pytest.approx(0.015)


def test_usage_without_cost_counts_as_zero():
    budget = _budget()
    budget.record(Usage(prompt_tokens=10))
    budget.record(None)
    assert budget.spent_cost_usd == 0.0


def test_optional_stage_must_leave_reserve():
    clock = FakeClock()
    budget = _budget(clock)
    clock.advance(45.0)  # 15s left; 15s - 8s reserve = 7s >= 6s estimate
    assert budget.may_spend("fix") is True
    clock.advance(2.0)   # 13s left; 5s after reserve < 6s
    assert budget.may_spend("fix") is False
    # Review stages may spend the reserve
    assert budget.may_spend("review") is True
    assert budget.may_spend("final_review") is True


def test_cost_reserve_and_overrun_tolerance():
    budget = _budget()
    budget.record(Usage(cost_usd=0.0468))
    # remaining 0.0032 - reserve 0.002 + tolerance 0.00025 = 0.00145 < average 0.0468
    assert budget.may_spend("syntax_repair") is False
    assert budget.may_spend("review") is False


def test_review_fits_within_tolerance():
    budget = _budget(max_total_cost_usd=0.01)
    budget.record(Usage(cost_usd=0.005))
    # remaining 0.005 + 0.00025 tolerance covers a 0.005 estimate
    assert budget.may_spend("review") is True


def test_explicit_estimate_overrides_default():
    budget = _budget()
    assert budget.may_spend("fix", SpendEstimate(ms=1, cost_usd=0.04)) is True
    assert budget.may_spend("fix", SpendEstimate(ms=1, cost_usd=0.05)) is False


def test_reserve_available():
    clock = FakeClock()
    budget = _budget(clock)
    assert budget.reserve_available() is True
    budget.record(Usage(cost_usd=0.0485))
    # 0.0015 left < 0.002 reserve
    assert budget.reserve_available() is False

    clock2 = FakeClock()
    late = _budget(clock2)
    clock2.advance(53.0)
    assert late.reserve_available() is False


def test_timeout_is_capped_by_remaining_time():
    clock = FakeClock()
    budget = _budget(clock)
    assert budget.timeout_for_next_call() <= 60.0
    clock.advance(57.5)
    assert budget.timeout_for_next_call() == pytest.approx(2.5)
    clock.advance(10.0)
    assert budget.timeout_for_next_call() == 1.0


def test_snapshot():
    clock = FakeClock()
    budget = _budget(clock)
    budget.record(Usage(cost_usd=0.001), elapsed_ms=500)
    clock.advance(1.5)
    snap = budget.snapshot()
    assert snap["elapsed_ms"] == 1500
    assert snap["spent_cost_usd"] == pytest.approx(0.001)
    assert snap["calls"] == 1


def test_reserve_check_has_no_tolerance():
    budget = _budget(max_total_cost_usd=0.01, reserve_independent_review_cost_usd=0.0015)
    budget.record(Usage(cost_usd=0.0087))
    # 0.0013 left: short of the 0.0015 reserve even though 0.0013 + 0.00025 would cover it
    assert budget.reserve_available() is False

    roomy = _budget(max_total_cost_usd=0.01, reserve_independent_review_cost_usd=0.0015)
    roomy.record(Usage(cost_usd=0.008))
    assert roomy.reserve_available() is True
