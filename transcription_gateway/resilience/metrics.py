"""
Resilience Metrics

This module provides Prometheus metrics for the circuit breaker, retry,
rate limiter and fallback resilience patterns, plus per-provider request
outcome metrics emitted by the orchestrator.

Metrics Provided:
- Circuit breaker state transitions (counter) and current state (gauge)
- Retry attempts (counter)
- Rate limiter rejections (counter)
- Provider fallbacks (counter)
- Provider requests by outcome (counter), latency (histogram), cost (counter)

Metric names are module constants so tests and dashboards share one spelling.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Constants
# =============================================================================

METRIC_CIRCUIT_TRANSITIONS = "transcription_gateway_circuit_breaker_state_transitions_total"
METRIC_CIRCUIT_STATE = "transcription_gateway_circuit_breaker_state"
METRIC_RETRY_ATTEMPTS = "transcription_gateway_retry_attempts_total"
METRIC_RATE_LIMIT_REJECTIONS = "transcription_gateway_rate_limit_rejections_total"
METRIC_FALLBACKS = "transcription_gateway_provider_fallbacks_total"
METRIC_PROVIDER_REQUESTS = "transcription_gateway_provider_requests_total"
METRIC_PROVIDER_LATENCY = "transcription_gateway_provider_request_duration_seconds"
METRIC_PROVIDER_COST = "transcription_gateway_provider_cost_dollars_total"


# =============================================================================
# Circuit Breaker
# =============================================================================

CIRCUIT_STATE_TRANSITIONS = Counter(
    name=METRIC_CIRCUIT_TRANSITIONS,
    documentation="Total number of circuit breaker state transitions",
    labelnames=["circuit_name", "to_state", "from_state"],
)

CIRCUIT_STATE_GAUGE = Gauge(
    name=METRIC_CIRCUIT_STATE,
    documentation="Current state of circuit breaker (0=closed, 1=half_open, 2=open)",
    labelnames=["circuit_name"],
)

# State to numeric mapping for gauge
_STATE_TO_NUMERIC = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}


def record_circuit_state_transition(
    circuit_name: str,
    to_state: str,
    from_state: str,
) -> None:
    """
    Record a circuit breaker state transition and update the state gauge.

    Args:
        circuit_name: Name of the circuit breaker
        to_state: State transitioning to (closed, open, half_open)
        from_state: State transitioning from (closed, open, half_open)
    """
    CIRCUIT_STATE_TRANSITIONS.labels(
        circuit_name=circuit_name,
        to_state=to_state,
        from_state=from_state,
    ).inc()

    CIRCUIT_STATE_GAUGE.labels(circuit_name=circuit_name).set(
        _STATE_TO_NUMERIC.get(to_state, 0)
    )


# =============================================================================
# Retry and Rate Limiting
# =============================================================================

RETRY_ATTEMPTS = Counter(
    name=METRIC_RETRY_ATTEMPTS,
    documentation="Total number of retries scheduled after a retryable failure",
    labelnames=["operation"],
)

RATE_LIMIT_REJECTIONS = Counter(
    name=METRIC_RATE_LIMIT_REJECTIONS,
    documentation="Total number of requests rejected by a rate limiter",
    labelnames=["limiter_name", "reason"],
)


def record_retry_attempt(operation: str) -> None:
    """Record one scheduled retry for ``operation``."""
    RETRY_ATTEMPTS.labels(operation=operation).inc()


def record_rate_limit_rejection(limiter_name: str, reason: str) -> None:
    """
    Record a rate limiter rejection.

    Args:
        limiter_name: Name of the limiter (provider identity)
        reason: "rate_limited" or "queue_full"
    """
    RATE_LIMIT_REJECTIONS.labels(limiter_name=limiter_name, reason=reason).inc()


# =============================================================================
# Fallback and Provider Outcomes
# =============================================================================

PROVIDER_FALLBACKS = Counter(
    name=METRIC_FALLBACKS,
    documentation="Total number of fallbacks from one provider to another",
    labelnames=["from_provider", "to_provider"],
)

PROVIDER_REQUESTS = Counter(
    name=METRIC_PROVIDER_REQUESTS,
    documentation="Total number of provider requests by outcome",
    labelnames=["provider", "status"],
)

PROVIDER_LATENCY = Histogram(
    name=METRIC_PROVIDER_LATENCY,
    documentation="Provider request duration in seconds, retries included",
    labelnames=["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

PROVIDER_COST = Counter(
    name=METRIC_PROVIDER_COST,
    documentation="Estimated transcription cost in dollars",
    labelnames=["provider"],
)


def record_fallback(from_provider: str, to_provider: str) -> None:
    """Record a fallback from one provider to another."""
    PROVIDER_FALLBACKS.labels(from_provider=from_provider, to_provider=to_provider).inc()


def record_provider_request(
    provider: str,
    status: str,
    latency_seconds: float | None = None,
    cost: float | None = None,
) -> None:
    """
    Record the outcome of one orchestrated provider request.

    Args:
        provider: Provider identity value
        status: "success" or "failure"
        latency_seconds: Wall time of the request, if measured
        cost: Estimated cost in dollars (successes only)
    """
    PROVIDER_REQUESTS.labels(provider=provider, status=status).inc()
    if latency_seconds is not None:
        PROVIDER_LATENCY.labels(provider=provider).observe(latency_seconds)
    if cost:
        PROVIDER_COST.labels(provider=provider).inc(cost)
