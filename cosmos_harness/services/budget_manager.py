"""
Budget Manager
==============
Tracks wall time and USD spend for one run and decides whether the next LLM
call still fits.

Reserve Policy:
    - A slice of time (reserve_independent_review_ms) and money
      (reserve_independent_review_cost_usd) is held back for the mandatory
      final review
    - Optional stages (generation repair, syntax repair, fix passes) must fit
      AFTER the reserve is subtracted
    - Review stages may spend the reserve
    - When the reserve itself no longer fits, the run ends as BudgetExhausted

Estimates:
    The next call is estimated as the larger of a floor buffer and the
    observed per-call average so far:
        ms floor   = clamp(0.15 · max_total_ms, 1200, 6000)
        cost floor = clamp(0.02 · max_total_cost_usd, 0.00015, 0.003)
    A small overrun tolerance absorbs provider rounding in the per-stage
    check only; the reserve check itself is strict.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from cosmos_harness.core.config import HTTP_TIMEOUT_SECONDS
from cosmos_harness.core.constants import RESERVE_STAGES
from cosmos_harness.core.errors import HarnessError
from cosmos_harness.models.harness_config import HarnessConfig
from cosmos_harness.models.usage import Usage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Guard constants
# ---------------------------------------------------------------------------
_MIN_MS_BUFFER_FLOOR = 1200
_MIN_MS_BUFFER_CEIL = 6000
_MIN_MS_BUFFER_RATIO = 0.15
_MIN_COST_BUFFER_FLOOR = 0.00015
_MIN_COST_BUFFER_CEIL = 0.003
_MIN_COST_BUFFER_RATIO = 0.02
COST_OVERRUN_TOLERANCE_USD = 0.00025
_MIN_CALL_TIMEOUT_SECONDS = 1.0


def _clamp(value, low, high):
    return max(low, min(high, value))


class BudgetRefused(HarnessError):
    """An optional LLM call was refused because it would breach the reserve."""

    def __init__(self, stage: str) -> None:
        super().__init__(f"Budget refused stage '{stage}'")
        self.stage = stage


@dataclass(frozen=True)
class SpendEstimate:
    ms: int
    cost_usd: float


class BudgetManager:
    """
    Wall-time and cost accounting for a single harness run.

    Parameters
    ----------
    config : HarnessConfig
        Deadline, cost cap, and reserve settings.
    clock : callable
        Monotonic clock in seconds (injectable for tests).
    """

    def __init__(self, config: HarnessConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config
        self._clock = clock
        self._started = clock()
        self._cost_usd = 0.0
        self._calls = 0
        self._call_ms_total = 0

    # -------------------------------------------------------------------
    # Accounting
    # -------------------------------------------------------------------
    def record(self, usage: Optional[Usage], elapsed_ms: int = 0) -> None:
        """Accrue the usage of one completed (or failed) LLM call."""
        if usage is not None:
            self._cost_usd += usage.cost_or_zero
        self._calls += 1
        self._call_ms_total += max(elapsed_ms, 0)

    @property
    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    @property
    def spent_cost_usd(self) -> float:
        return self._cost_usd

    @property
    def remaining_ms(self) -> int:
        return self.config.max_total_ms - self.elapsed_ms

    @property
    def remaining_cost_usd(self) -> float:
        return self.config.max_total_cost_usd - self._cost_usd

    @property
    def min_ms_buffer(self) -> int:
        return int(_clamp(self.config.max_total_ms * _MIN_MS_BUFFER_RATIO, _MIN_MS_BUFFER_FLOOR, _MIN_MS_BUFFER_CEIL))

    @property
    def min_cost_buffer(self) -> float:
        return _clamp(
            self.config.max_total_cost_usd * _MIN_COST_BUFFER_RATIO,
            _MIN_COST_BUFFER_FLOOR,
            _MIN_COST_BUFFER_CEIL,
        )

    # -------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------
    def estimate_for(self, stage: str) -> SpendEstimate:
        """Estimated time/cost of the next call for ``stage``."""
        if self._calls:
            avg_ms = self._call_ms_total // self._calls
            avg_cost = self._cost_usd / self._calls
        else:
            avg_ms, avg_cost = 0, 0.0
        return SpendEstimate(
            ms=max(self.min_ms_buffer, avg_ms),
            cost_usd=max(self.min_cost_buffer, avg_cost),
        )

    def may_spend(self, stage: str, estimate: Optional[SpendEstimate] = None) -> bool:
        """
        Decide whether a call for ``stage`` fits the remaining budget.

        Parameters
        ----------
        stage : str
            Stage name; review stages may spend the reserve.
        estimate : SpendEstimate or None
            Explicit estimate; defaults to estimate_for(stage).

        Returns
        -------
        bool
            False once the call would breach the reserve (or, for review
            stages, the cap itself).
        """
        est = estimate or self.estimate_for(stage)
        if stage in RESERVE_STAGES:
            reserve_ms, reserve_cost = 0, 0.0
        else:
            reserve_ms = self.config.reserve_independent_review_ms
            reserve_cost = self.config.reserve_independent_review_cost_usd

        fits_time = self.remaining_ms - reserve_ms >= est.ms
        fits_cost = self.remaining_cost_usd - reserve_cost + COST_OVERRUN_TOLERANCE_USD >= est.cost_usd
        if not (fits_time and fits_cost):
            logger.info(
                "Budget refuses %s: remaining %dms / $%.5f, reserve %dms / $%.5f, estimate %dms / $%.5f",
                stage, self.remaining_ms, self.remaining_cost_usd,
                reserve_ms, reserve_cost, est.ms, est.cost_usd,
            )
        return fits_time and fits_cost

    def reserve_available(self) -> bool:
        """True while the independent-review reserve itself still fits."""
        return (
            self.remaining_ms >= self.config.reserve_independent_review_ms
            and self.remaining_cost_usd >= self.config.reserve_independent_review_cost_usd
        )

    def timeout_for_next_call(self) -> float:
        """Per-call HTTP timeout: the fixed timeout capped by remaining wall time."""
        remaining_s = self.remaining_ms / 1000
        return max(_MIN_CALL_TIMEOUT_SECONDS, min(HTTP_TIMEOUT_SECONDS, remaining_s))

    def snapshot(self) -> Dict[str, float]:
        return {
            "elapsed_ms": self.elapsed_ms,
            "spent_cost_usd": round(self._cost_usd, 6),
            "remaining_ms": self.remaining_ms,
            "remaining_cost_usd": round(self.remaining_cost_usd, 6),
            "calls": self._calls,
        }
