"""
Resilience patterns for the Transcription Gateway.

This package provides:
- CircuitBreaker: Closed/Open/HalfOpen state machine per provider
- RateLimiter: Token bucket with a bounded wait queue
- RetryStrategy: Exponential backoff with positive jitter
- Prometheus metrics for all of the above
"""

from transcription_gateway.resilience.circuit_breaker import CircuitBreaker, CircuitState
from transcription_gateway.resilience.rate_limiter import RateLimiter, RateLimitResult
from transcription_gateway.resilience.retry import (
    RetryPolicy,
    RetryStrategy,
    compute_backoff_delay,
    compute_jittered_delay,
    default_is_retryable,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitState",
    # Rate Limiter
    "RateLimiter",
    "RateLimitResult",
    # Retry
    "RetryPolicy",
    "RetryStrategy",
    "compute_backoff_delay",
    "compute_jittered_delay",
    "default_is_retryable",
]
