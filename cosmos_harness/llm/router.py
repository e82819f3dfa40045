"""
Model Router
============
Maps a logical tier to a concrete model and manages Speed-tier failover.

Tiers:
    SPEED     — cheap, fast model used for syntax repairs; has failover candidates
    BALANCED  — default reviewer
    SMART     — generation and blocking-finding fix passes

Every tier shares the same max-output-tokens cap (16384). JSON-mode
capability is looked up per model id: models that honour
``response_format: json_schema`` get it, everything else gets the schema
inlined into the system prompt by the client.

Failover Strategy:
    1. resolve_with_failover(SPEED) yields the primary, then each declared
       secondary in declaration order (stable tie-break).
    2. Secondaries in cooldown are skipped; the primary is always yielded so a
       run never ends up with zero candidates.
    3. Other tiers yield only their primary — failures there surface to the
       controller.

Model Health Tracking:
    - Track consecutive failures per model id
    - After MODEL_COOLDOWN_THRESHOLD failures in a row, the model cools down
      for MODEL_COOLDOWN_SKIP_COUNT resolutions
    - A SMART primary in cooldown marks the tier as degraded; the controller
      then generates at BALANCED
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from cosmos_harness.core.config import (
    SPEED_MODEL, SPEED_FALLBACK_MODELS, BALANCED_MODEL, SMART_MODEL,
    JSON_MODE_MODELS, MAX_OUTPUT_TOKENS,
    MODEL_COOLDOWN_THRESHOLD, MODEL_COOLDOWN_SKIP_COUNT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tiers & descriptors
# ---------------------------------------------------------------------------
class ModelTier(str, Enum):
    SPEED = "speed"
    BALANCED = "balanced"
    SMART = "smart"


@dataclass(frozen=True)
class ModelDescriptor:
    """A concrete model a tier resolves to."""
    tier: ModelTier
    model_id: str
    max_tokens: int = MAX_OUTPUT_TOKENS
    supports_json_mode: bool = False


def _descriptor(tier: ModelTier, model_id: str, json_mode_models=JSON_MODE_MODELS) -> ModelDescriptor:
    return ModelDescriptor(
        tier=tier,
        model_id=model_id,
        max_tokens=MAX_OUTPUT_TOKENS,
        supports_json_mode=model_id in json_mode_models,
    )


# ---------------------------------------------------------------------------
# Model Health Tracker
# ---------------------------------------------------------------------------
@dataclass
class ModelHealth:
    """Tracks consecutive failures and cooldown for a model."""
    consecutive_failures: int = 0
    is_healthy: bool = True
    max_failures: int = MODEL_COOLDOWN_THRESHOLD
    cooldown_remaining: int = 0

    def record_failure(self) -> None:
        """Record a failure. Enter cooldown after max consecutive failures."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.is_healthy = False
            self.cooldown_remaining = MODEL_COOLDOWN_SKIP_COUNT
            logger.warning(
                "Model entering cooldown after %d failures (skip %d resolutions)",
                self.consecutive_failures, self.cooldown_remaining,
            )

    def record_success(self) -> None:
        """Record a success. Reset failure counter."""
        self.consecutive_failures = 0

    def tick_cooldown(self) -> None:
        """Decrement cooldown. Re-enable when cooldown expires."""
        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            if self.cooldown_remaining <= 0:
                self.is_healthy = True
                # A single post-cooldown failure re-triggers immediately
                self.consecutive_failures = max(1, self.max_failures - 1)
                logger.info("Model cooldown expired, re-enabled (cautious)")

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.is_healthy = True
        self.cooldown_remaining = 0


# ---------------------------------------------------------------------------
# Model Router
# ---------------------------------------------------------------------------
class ModelRouter:
    """
    Resolves tiers to models.

    Usage:
        router = ModelRouter()
        descriptor = router.resolve(ModelTier.SMART)
        for candidate in router.resolve_with_failover(ModelTier.SPEED):
            ...
        router.report_failure(candidate.model_id)
    """

    def __init__(
        self,
        speed_model: str = SPEED_MODEL,
        speed_fallbacks: Optional[List[str]] = None,
        balanced_model: str = BALANCED_MODEL,
        smart_model: str = SMART_MODEL,
        json_mode_models=JSON_MODE_MODELS,
    ) -> None:
        fallbacks = SPEED_FALLBACK_MODELS if speed_fallbacks is None else speed_fallbacks
        self._primary: Dict[ModelTier, ModelDescriptor] = {
            ModelTier.SPEED: _descriptor(ModelTier.SPEED, speed_model, json_mode_models),
            ModelTier.BALANCED: _descriptor(ModelTier.BALANCED, balanced_model, json_mode_models),
            ModelTier.SMART: _descriptor(ModelTier.SMART, smart_model, json_mode_models),
        }
        self._speed_failover: List[ModelDescriptor] = [
            _descriptor(ModelTier.SPEED, model_id, json_mode_models)
            for model_id in fallbacks
            if model_id != speed_model
        ]
        self._health: Dict[str, ModelHealth] = {}
        for descriptor in [*self._primary.values(), *self._speed_failover]:
            self._health.setdefault(descriptor.model_id, ModelHealth())

    def resolve(self, tier: ModelTier) -> ModelDescriptor:
        """
        Return the primary descriptor for a tier.

        Raises
        ------
        ValueError
            If ``tier`` is not a ModelTier.
        """
        try:
            return self._primary[ModelTier(tier)]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown model tier: {tier!r}") from exc

    def resolve_with_failover(self, primary: ModelTier) -> Iterator[ModelDescriptor]:
        """
        Yield candidate descriptors for a tier in stable declaration order.

        Only the Speed tier has secondaries. Secondaries in cooldown are
        skipped; the primary is always yielded first.
        """
        for health in self._health.values():
            health.tick_cooldown()

        first = self.resolve(primary)
        yield first
        if ModelTier(primary) is not ModelTier.SPEED:
            return
        for candidate in self._speed_failover:
            health = self._health.get(candidate.model_id)
            if health and not health.is_healthy:
                logger.info("Skipping failover model %s (cooldown)", candidate.model_id)
                continue
            logger.info("Failing over %s → %s", first.model_id, candidate.model_id)
            yield candidate

    def is_degraded(self, tier: ModelTier) -> bool:
        """True while the tier's primary model is cooling down."""
        health = self._health.get(self.resolve(tier).model_id)
        return bool(health and not health.is_healthy)

    def report_success(self, model_id: str) -> None:
        health = self._health.get(model_id)
        if health:
            health.record_success()

    def report_failure(self, model_id: str) -> None:
        health = self._health.get(model_id)
        if health:
            health.record_failure()

    def reset(self) -> None:
        """Reset all model health."""
        for health in self._health.values():
            health.reset()

    def get_health(self, model_id: str) -> Optional[ModelHealth]:
        """Get health tracker for a model (for testing)."""
        return self._health.get(model_id)

    @property
    def model_health_state(self) -> Dict[str, Dict[str, object]]:
        """Expose per-model health and cooldown for diagnostics."""
        return {
            model_id: {
                "is_healthy": h.is_healthy,
                "consecutive_failures": h.consecutive_failures,
                "cooldown_remaining": h.cooldown_remaining,
            }
            for model_id, h in self._health.items()
        }
