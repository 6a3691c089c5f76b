"""
Provider Selector - picks a provider when the caller names none.

Implements the Strategy pattern for provider selection. The orchestrator
hands the selector the currently eligible providers (enabled, built, breaker
not open) in fallback-chain order; the selector returns one of them, or None
when the strategy's choice is not eligible.

Strategies:
    manual: the configured default provider
    round_robin: rotating cursor over the eligible list
    cost_optimized: lowest average cost (list price when no history)
    performance_optimized: lowest average latency
    quality_optimized: first eligible entry of the static quality ranking
    ab_test: deterministic SHA-256 bucketing of a selection key
"""

import hashlib
import itertools
import logging
from typing import Any, Callable, Optional, Sequence

from transcription_gateway.models.domain import (
    OrchestratorConfig,
    ProviderIdentity,
    SelectionStrategy,
)
from transcription_gateway.services.metrics_tracker import MetricsTracker
from transcription_gateway.services.pricing import default_cost

logger = logging.getLogger(__name__)

_BUCKET_SPACE = float(2**64)


def ab_bucket(experiment_id: str, selection_key: str) -> float:
    """
    Deterministic bucket in [0, 1) for ``selection_key`` within an experiment.

    The same key always lands in the same bucket for a given experiment, and
    changing the experiment id reshuffles every key.
    """
    digest = hashlib.sha256(f"{experiment_id}:{selection_key}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _BUCKET_SPACE


class ProviderSelector:
    """
    Selects a provider identity under a SelectionStrategy.

    The round-robin cursor persists across calls and is shared by the
    round_robin strategy and the keyless ab_test fallback.

    Example:
        >>> selector = ProviderSelector(tracker)
        >>> selector.select(SelectionStrategy.ROUND_ROBIN, [WHISPER, DEEPGRAM], config)
        <ProviderIdentity.WHISPER: 'whisper'>
    """

    def __init__(self, metrics_tracker: MetricsTracker) -> None:
        self._metrics = metrics_tracker
        self._cursor = itertools.count()
        self._round_robin_index = 0
        self._selections: dict[str, int] = {}
        self._strategies: dict[SelectionStrategy, Callable[..., Optional[ProviderIdentity]]] = {
            SelectionStrategy.MANUAL: self._select_manual,
            SelectionStrategy.ROUND_ROBIN: self._select_round_robin,
            SelectionStrategy.COST_OPTIMIZED: self._select_by_cost,
            SelectionStrategy.PERFORMANCE_OPTIMIZED: self._select_by_performance,
            SelectionStrategy.QUALITY_OPTIMIZED: self._select_by_quality,
            SelectionStrategy.AB_TEST: self._select_for_ab_test,
        }

    def select(
        self,
        strategy: SelectionStrategy,
        eligible: Sequence[ProviderIdentity],
        config: OrchestratorConfig,
        selection_key: Optional[str] = None,
    ) -> Optional[ProviderIdentity]:
        """
        Pick one of ``eligible`` under ``strategy``.

        Args:
            strategy: Selection policy
            eligible: Eligible providers in fallback-chain order
            config: Current configuration snapshot
            selection_key: User or session id (A/B bucketing)

        Returns:
            The chosen identity, or None if nothing suitable is eligible
        """
        if not eligible:
            return None

        choice = self._strategies[strategy](list(eligible), config, selection_key)
        if choice is not None:
            self._selections[choice.value] = self._selections.get(choice.value, 0) + 1
        logger.debug(
            f"{strategy.value} selection: {choice.value if choice else None} "
            f"from {[p.value for p in eligible]}"
        )
        return choice

    # =========================================================================
    # Strategies
    # =========================================================================

    def _select_manual(self, eligible, config, _selection_key):
        if config.default_provider in eligible:
            return config.default_provider
        return None

    def _select_round_robin(self, eligible, _config, _selection_key):
        self._round_robin_index = next(self._cursor)
        return eligible[self._round_robin_index % len(eligible)]

    def _cost_of(self, provider: ProviderIdentity) -> float:
        # Unit mix: list price is per minute, the running average per request
        metrics = self._metrics.get_metrics(provider)
        if metrics.successful_requests == 0 or metrics.average_cost == 0:
            return default_cost(provider)
        return metrics.average_cost

    def _select_by_cost(self, eligible, _config, _selection_key):
        return min(
            eligible,
            key=lambda p: (
                self._cost_of(p),
                self._metrics.get_metrics(p).average_latency_seconds,
            ),
        )

    def _select_by_performance(self, eligible, _config, _selection_key):
        def score(provider: ProviderIdentity) -> tuple[float, float]:
            metrics = self._metrics.get_metrics(provider)
            if metrics.successful_requests == 0 and metrics.failed_requests > 0:
                # Only failures: no latency sample, so rank last
                return (float("inf"), metrics.failure_rate)
            return (metrics.average_latency_seconds, metrics.failure_rate)

        return min(eligible, key=score)

    def _select_by_quality(self, eligible, config, _selection_key):
        for provider in config.quality_ranking:
            if provider in eligible:
                return provider
        return None

    def _select_for_ab_test(self, eligible, config, selection_key):
        ab_test = config.ab_test
        if not ab_test.enabled:
            return self._select_manual(eligible, config, selection_key)

        if ab_test.force_provider is not None:
            assigned = ab_test.force_provider
        elif selection_key is None:
            return self._select_round_robin(eligible, config, selection_key)
        else:
            bucket = ab_bucket(ab_test.experiment_id, selection_key)
            assigned = (
                ab_test.control_provider
                if bucket < ab_test.traffic_split
                else ab_test.treatment_provider
            )

        return assigned if assigned in eligible else None

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_statistics(self) -> dict[str, Any]:
        return {
            "round_robin_index": self._round_robin_index,
            "strategies_available": [s.value for s in self._strategies],
            "selections": dict(self._selections),
        }

    def reset(self) -> None:
        """Restart the round-robin cursor and clear selection counts."""
        self._cursor = itertools.count()
        self._round_robin_index = 0
        self._selections.clear()
        logger.info("Provider selector reset")
