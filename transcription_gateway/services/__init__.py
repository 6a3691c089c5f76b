"""
Services Package - orchestration, metrics tracking and pricing.

The orchestrator lives in ``transcription_gateway.services.orchestrator``.
"""

from transcription_gateway.services.metrics_tracker import MetricsTracker
from transcription_gateway.services.pricing import default_cost, estimate_cost

__all__ = ["MetricsTracker", "default_cost", "estimate_cost"]
