"""
Unit tests for transcription_gateway/core/exceptions.py - error taxonomy.
"""

import pytest


class TestBaseException:
    """Tests for TranscriptionGatewayError."""

    def test_message_and_code(self):
        from transcription_gateway.core.exceptions import ErrorCode, TranscriptionGatewayError

        error = TranscriptionGatewayError("boom", request_id="r-1")

        assert str(error) == "boom"
        assert error.message == "boom"
        assert error.error_code == ErrorCode.GATEWAY_ERROR
        assert error.request_id == "r-1"

    @pytest.mark.parametrize(
        "name",
        [
            "ConfigurationError",
            "TranscriptionValidationError",
            "ProviderError",
            "RateLimitedError",
            "ProviderUnavailableError",
            "NoProviderAvailableError",
            "RetriesExhaustedError",
        ],
    )
    def test_hierarchy(self, name):
        """Every gateway error derives from TranscriptionGatewayError."""
        from transcription_gateway.core import exceptions

        assert issubclass(getattr(exceptions, name), exceptions.TranscriptionGatewayError)


class TestProviderErrors:
    """Tests for adapter-facing errors."""

    @pytest.mark.parametrize(
        "factory,status,retryable",
        [
            (lambda e: e.ProviderAuthenticationError("whisper"), 401, False),
            (lambda e: e.ProviderQuotaExceededError("whisper"), 402, False),
            (lambda e: e.ProviderBadRequestError("deepgram"), 400, False),
            (lambda e: e.ProviderRateLimitError("deepgram"), 429, True),
            (lambda e: e.ProviderServerError("deepgram"), 503, True),
            (lambda e: e.ProviderConnectionError("deepgram"), None, True),
            (lambda e: e.ProviderTimeoutError("whisper", timeout_seconds=30), None, True),
        ],
    )
    def test_defaults(self, factory, status, retryable):
        """Each subclass carries its default status code and retryability."""
        from transcription_gateway.core import exceptions

        error = factory(exceptions)
        assert isinstance(error, exceptions.ProviderError)
        assert error.status_code == status
        assert error.retryable is retryable

    def test_status_override(self):
        from transcription_gateway.core.exceptions import ProviderServerError

        error = ProviderServerError("whisper", message="bad gateway", status_code=502)
        assert error.status_code == 502
        assert error.provider == "whisper"
        assert error.message == "bad gateway"

    def test_retryable_override(self):
        from transcription_gateway.core.exceptions import ProviderError

        assert ProviderError("odd", "deepgram").retryable is False
        assert ProviderError("odd", "deepgram", retryable=True).retryable is True

    def test_timeout_message(self):
        from transcription_gateway.core.exceptions import ProviderTimeoutError

        assert "30s" in ProviderTimeoutError("whisper", timeout_seconds=30).message


class TestGatewayErrors:
    """Tests for admission, health and retry errors."""

    def test_rate_limited(self):
        from transcription_gateway.core.exceptions import ErrorCode, RateLimitedError

        error = RateLimitedError("deepgram", retry_after=1.5)
        assert error.retry_after == 1.5
        assert error.error_code == ErrorCode.RATE_LIMITED
        assert "1.50s" in str(error)

    def test_queue_full_is_rate_limited(self):
        from transcription_gateway.core.exceptions import (
            ErrorCode,
            QueueFullError,
            RateLimitedError,
        )

        error = QueueFullError("deepgram", 8, retry_after=0.2)
        assert isinstance(error, RateLimitedError)
        assert error.max_queue_size == 8
        assert error.retry_after == 0.2
        assert error.error_code == ErrorCode.QUEUE_FULL

    def test_circuit_open_is_unavailable(self):
        from transcription_gateway.core.exceptions import (
            CircuitOpenError,
            ErrorCode,
            ProviderUnavailableError,
        )

        error = CircuitOpenError("whisper", next_attempt_at=1060.0, retry_after=12.0)
        assert isinstance(error, ProviderUnavailableError)
        assert error.error_code == ErrorCode.CIRCUIT_OPEN
        assert "12.00s" in str(error)

    def test_retries_exhausted(self):
        from transcription_gateway.core.exceptions import (
            ProviderServerError,
            RetriesExhaustedError,
        )

        last = ProviderServerError("deepgram")
        error = RetriesExhaustedError(last, 3, provider="deepgram")

        assert error.last_error is last
        assert error.attempts == 3
        assert "after 3 attempts for provider 'deepgram'" in str(error)
