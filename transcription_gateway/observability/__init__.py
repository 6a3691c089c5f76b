"""
Observability Package

Structured JSON logging with correlation ids. Prometheus metrics live in
``transcription_gateway.resilience.metrics``.
"""

from transcription_gateway.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    request_correlation,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    "request_correlation",
]
