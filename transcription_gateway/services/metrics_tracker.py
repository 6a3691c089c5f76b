"""
Metrics Tracker Service

In-process per-provider request statistics. These feed provider selection
(cost and performance strategies) and the orchestrator's get_metrics();
they are not persisted across restarts.

Averages are running means over successful requests only:

    avg_n = avg_{n-1} + (x_n - avg_{n-1}) / n

Each provider's record has its own threading.Lock so the tracker can be
used from worker threads or outside an event loop. No lock spans providers.

Listeners registered with add_listener() are called synchronously after
every update with the provider's fresh ProviderMetrics snapshot.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from transcription_gateway.models.domain import (
    AggregateMetrics,
    ProviderIdentity,
    ProviderMetrics,
)

logger = logging.getLogger(__name__)

MetricsListener = Callable[[ProviderMetrics], None]

# Recent failures reduce availability linearly over this window
AVAILABILITY_DECAY_SECONDS = 300.0


@dataclass
class _ProviderRecord:
    """Mutable accumulator behind one provider's ProviderMetrics snapshots."""

    provider: ProviderIdentity
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_seconds: float = 0.0
    cost_samples: int = 0
    average_cost: float = 0.0
    last_failure_at: Optional[datetime] = None
    last_failure_clock: Optional[float] = None
    last_error: Optional[str] = None

    def snapshot(self) -> ProviderMetrics:
        return ProviderMetrics(
            provider=self.provider,
            total_requests=self.total_requests,
            successful_requests=self.successful_requests,
            failed_requests=self.failed_requests,
            average_latency_seconds=self.average_latency_seconds,
            average_cost=self.average_cost,
            last_failure_at=self.last_failure_at,
            last_error=self.last_error,
        )


class MetricsTracker:
    """
    Per-provider success/failure, latency and cost statistics.

    Example:
        >>> tracker = MetricsTracker()
        >>> tracker.record_success(ProviderIdentity.WHISPER, latency_seconds=1.2, cost=0.006)
        >>> tracker.get_metrics(ProviderIdentity.WHISPER).success_rate
        1.0
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._records: dict[ProviderIdentity, _ProviderRecord] = {}
        self._records_lock = threading.Lock()
        self._listeners: list[MetricsListener] = []

    def _record_for(self, provider: ProviderIdentity) -> _ProviderRecord:
        record = self._records.get(provider)
        if record is None:
            with self._records_lock:
                record = self._records.setdefault(provider, _ProviderRecord(provider))
        return record

    # =========================================================================
    # Recording
    # =========================================================================

    def record_success(
        self,
        provider: ProviderIdentity,
        latency_seconds: float,
        cost: Optional[float] = None,
    ) -> ProviderMetrics:
        """
        Record a successful request.

        Args:
            provider: Provider that served the request
            latency_seconds: Wall time of the request
            cost: Estimated cost in USD, if known

        Returns:
            The provider's updated metrics snapshot
        """
        record = self._record_for(provider)
        with record.lock:
            record.total_requests += 1
            record.successful_requests += 1
            n = record.successful_requests
            record.average_latency_seconds += (
                latency_seconds - record.average_latency_seconds
            ) / n
            if cost is not None:
                record.cost_samples += 1
                record.average_cost += (cost - record.average_cost) / record.cost_samples
            snapshot = record.snapshot()

        self._notify(snapshot)
        return snapshot

    def record_failure(
        self,
        provider: ProviderIdentity,
        error: Optional[BaseException] = None,
        latency_seconds: Optional[float] = None,
    ) -> ProviderMetrics:
        """
        Record a failed request.

        Latency of failed requests does not enter the average.

        Args:
            provider: Provider that failed
            error: The error raised, kept as last_error
            latency_seconds: Wall time until failure (informational)

        Returns:
            The provider's updated metrics snapshot
        """
        record = self._record_for(provider)
        with record.lock:
            record.total_requests += 1
            record.failed_requests += 1
            record.last_failure_at = datetime.now(timezone.utc)
            record.last_failure_clock = self._clock()
            if error is not None:
                record.last_error = str(error) or type(error).__name__
            snapshot = record.snapshot()

        logger.debug(
            f"Recorded failure for {provider.value}: {snapshot.last_error} "
            f"(latency={latency_seconds})"
        )
        self._notify(snapshot)
        return snapshot

    def record_request(
        self,
        provider: ProviderIdentity,
        success: bool,
        latency_seconds: Optional[float] = None,
        cost: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> ProviderMetrics:
        """Record one request outcome; dispatches to record_success/record_failure."""
        if success:
            return self.record_success(provider, latency_seconds or 0.0, cost)
        return self.record_failure(provider, error, latency_seconds)

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: MetricsListener) -> Callable[[], None]:
        """
        Register a callback invoked after every update.

        Returns:
            A function that unregisters the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, snapshot: ProviderMetrics) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Metrics listener failed for {snapshot.provider.value}: {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    def has_data(self, provider: ProviderIdentity) -> bool:
        """True once the provider has at least one recorded request."""
        record = self._records.get(provider)
        return record is not None and record.total_requests > 0

    def get_metrics(self, provider: ProviderIdentity) -> ProviderMetrics:
        """Snapshot for one provider (zeroed if nothing recorded yet)."""
        record = self._records.get(provider)
        if record is None:
            return ProviderMetrics(provider=provider)
        with record.lock:
            return record.snapshot()

    def get_all_metrics(self) -> dict[ProviderIdentity, ProviderMetrics]:
        """Snapshots for every provider with recorded activity."""
        return {provider: self.get_metrics(provider) for provider in list(self._records)}

    def get_aggregate(self) -> AggregateMetrics:
        """
        Totals across all providers.

        Aggregate averages are weighted by each provider's successful
        request count.
        """
        providers = self.get_all_metrics()
        total = sum(m.total_requests for m in providers.values())
        successful = sum(m.successful_requests for m in providers.values())
        failed = sum(m.failed_requests for m in providers.values())

        latency_sum = sum(
            m.average_latency_seconds * m.successful_requests for m in providers.values()
        )
        total_cost = 0.0
        cost_samples = 0
        for provider in providers:
            record = self._records.get(provider)
            if record is None:
                continue
            with record.lock:
                total_cost += record.average_cost * record.cost_samples
                cost_samples += record.cost_samples

        return AggregateMetrics(
            total_requests=total,
            successful_requests=successful,
            failed_requests=failed,
            average_latency_seconds=latency_sum / successful if successful else 0.0,
            average_cost=total_cost / cost_samples if cost_samples else 0.0,
            total_cost=round(total_cost, 6),
            providers=providers,
        )

    def get_performance_stats(self, provider: ProviderIdentity) -> dict[str, float]:
        """
        Derived statistics for one provider.

        ``availability`` is the success rate, scaled down linearly when the
        last failure happened within AVAILABILITY_DECAY_SECONDS. A provider
        with no history is fully available.
        """
        metrics = self.get_metrics(provider)
        record = self._records.get(provider)

        availability = 1.0
        if metrics.total_requests:
            availability = metrics.success_rate
            if record is not None and record.last_failure_clock is not None:
                since = self._clock() - record.last_failure_clock
                if since < AVAILABILITY_DECAY_SECONDS:
                    availability *= max(0.0, since) / AVAILABILITY_DECAY_SECONDS

        return {
            "success_rate": metrics.success_rate,
            "error_rate": metrics.failure_rate,
            "average_latency_seconds": metrics.average_latency_seconds,
            "average_cost": metrics.average_cost,
            "availability": availability,
        }

    def export(self) -> list[dict[str, Any]]:
        """Plain-dict export of every provider with its derived stats."""
        return [
            {**metrics.model_dump(mode="json"), "stats": self.get_performance_stats(provider)}
            for provider, metrics in self.get_all_metrics().items()
        ]

    def reset(self, provider: Optional[ProviderIdentity] = None) -> None:
        """Clear one provider's statistics, or all of them."""
        with self._records_lock:
            if provider is None:
                self._records.clear()
                logger.info("All provider metrics reset")
            else:
                self._records.pop(provider, None)
                logger.info(f"Metrics reset for {provider.value}")
