"""
Custom exceptions for the Transcription Gateway.

This module provides the error taxonomy surfaced to callers of the
orchestrator. All exceptions inherit from TranscriptionGatewayError and
carry an error code for consistent handling and logging.

Taxonomy:
    RateLimitedError / QueueFullError: admission denied, no attempt made
    ProviderUnavailableError / CircuitOpenError: provider unhealthy, no attempt made
    NoProviderAvailableError: resolution failed before any call
    RetriesExhaustedError: wraps the last underlying error plus attempt count
    ProviderError (+ subclasses): adapter errors, passed through when non-retryable

Cancellation is signalled with asyncio.CancelledError and is never counted
as a provider failure.
"""

from enum import Enum
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for Transcription Gateway exceptions.

    These codes provide a consistent way to identify error types
    in logs and in caller-side messaging.
    """

    GATEWAY_ERROR = "GATEWAY_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    BAD_REQUEST = "BAD_REQUEST"
    PROVIDER_RATE_LIMIT = "PROVIDER_RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    QUEUE_FULL = "QUEUE_FULL"
    UNAVAILABLE = "UNAVAILABLE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    NO_PROVIDER = "NO_PROVIDER"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"


# =============================================================================
# Base Exception
# =============================================================================


class TranscriptionGatewayError(Exception):
    """
    Base exception for all Transcription Gateway errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.GATEWAY_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


class ConfigurationError(TranscriptionGatewayError):
    """Raised for invalid orchestrator or provider configuration."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: str = ErrorCode.CONFIGURATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.field = field


class TranscriptionValidationError(TranscriptionGatewayError):
    """
    Raised when a transcription request is invalid for a provider.

    Examples are empty audio payloads or files larger than the provider
    accepts. Never retried.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: str = ErrorCode.VALIDATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.field = field


# =============================================================================
# Provider (adapter) Errors
# =============================================================================


class ProviderError(TranscriptionGatewayError):
    """
    Exception for transcription provider issues.

    Raised by provider adapters when communication with the remote API
    fails. The ``retryable`` flag drives the default retry classification.

    Attributes:
        provider: Provider identity value (e.g. "whisper", "deepgram").
        status_code: HTTP status code from the provider API (if applicable).
        retryable: Whether a retry may succeed.
    """

    default_retryable = False

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        retryable: bool | None = None,
        error_code: str = ErrorCode.PROVIDER_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.provider = provider
        self.status_code = status_code
        self.retryable = self.default_retryable if retryable is None else retryable


class ProviderAuthenticationError(ProviderError):
    """Invalid or missing provider credentials (401/403)."""

    def __init__(self, provider: str, message: str = "Invalid API key", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 401)
        super().__init__(message, provider, error_code=ErrorCode.AUTH_ERROR, **kwargs)


class ProviderQuotaExceededError(ProviderError):
    """Account quota or billing limit reached (402)."""

    def __init__(self, provider: str, message: str = "Quota exceeded", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 402)
        super().__init__(message, provider, error_code=ErrorCode.QUOTA_EXCEEDED, **kwargs)


class ProviderBadRequestError(ProviderError):
    """Provider rejected the request as malformed (4xx other than 429)."""

    def __init__(self, provider: str, message: str = "Bad request", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 400)
        super().__init__(message, provider, error_code=ErrorCode.BAD_REQUEST, **kwargs)


class ProviderRateLimitError(ProviderError):
    """
    Upstream provider answered 429.

    Distinct from RateLimitedError, which is raised by the gateway's own
    admission control before any call is made.
    """

    default_retryable = True

    def __init__(
        self,
        provider: str,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("status_code", 429)
        super().__init__(message, provider, error_code=ErrorCode.PROVIDER_RATE_LIMIT, **kwargs)
        self.retry_after = retry_after


class ProviderServerError(ProviderError):
    """Provider-side failure (5xx)."""

    default_retryable = True

    def __init__(self, provider: str, message: str = "Provider temporarily unavailable", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 503)
        super().__init__(message, provider, error_code=ErrorCode.SERVER_ERROR, **kwargs)


class ProviderTimeoutError(ProviderError):
    """A single provider call attempt exceeded its timeout."""

    default_retryable = True

    def __init__(
        self,
        provider: str,
        timeout_seconds: float | None = None,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        if message is None:
            message = (
                f"Request timed out after {timeout_seconds}s"
                if timeout_seconds is not None
                else "Request timed out"
            )
        super().__init__(message, provider, error_code=ErrorCode.TIMEOUT, **kwargs)
        self.timeout_seconds = timeout_seconds


class ProviderConnectionError(ProviderError):
    """Network-level failure talking to the provider."""

    default_retryable = True

    def __init__(self, provider: str, message: str = "Network error", **kwargs: Any) -> None:
        super().__init__(message, provider, error_code=ErrorCode.NETWORK_ERROR, **kwargs)


# =============================================================================
# Admission Errors
# =============================================================================


class RateLimitedError(TranscriptionGatewayError):
    """
    Admission denied by the gateway's rate limiter. No call attempt was made.

    Attributes:
        provider: Provider identity value.
        retry_after: Seconds until a token is expected to be available.
    """

    def __init__(
        self,
        provider: str,
        retry_after: float | None = None,
        message: str | None = None,
        error_code: str = ErrorCode.RATE_LIMITED,
        **kwargs: Any,
    ) -> None:
        if message is None:
            message = f"Rate limit exceeded for provider '{provider}'"
            if retry_after is not None:
                message += f"; retry after {retry_after:.2f}s"
        super().__init__(message, error_code, **kwargs)
        self.provider = provider
        self.retry_after = retry_after


class QueueFullError(RateLimitedError):
    """The rate limiter's bounded wait queue is full."""

    def __init__(self, provider: str, max_queue_size: int, **kwargs: Any) -> None:
        super().__init__(
            provider,
            message=f"Rate limiter queue is full for provider '{provider}' (max={max_queue_size})",
            error_code=ErrorCode.QUEUE_FULL,
            **kwargs,
        )
        self.max_queue_size = max_queue_size


# =============================================================================
# Resolution / Health Errors
# =============================================================================


class ProviderUnavailableError(TranscriptionGatewayError):
    """The requested provider is disabled, unknown or unhealthy."""

    def __init__(
        self,
        provider: str,
        message: str | None = None,
        error_code: str = ErrorCode.UNAVAILABLE,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or f"Provider '{provider}' is not available", error_code, **kwargs)
        self.provider = provider


class CircuitOpenError(ProviderUnavailableError):
    """
    The provider's circuit breaker is open; the call failed fast.

    Attributes:
        provider: Provider identity value.
        next_attempt_at: Clock reading at which a trial call becomes eligible.
        retry_after: Seconds from the moment of raising until next_attempt_at.
    """

    def __init__(
        self,
        provider: str,
        next_attempt_at: float | None = None,
        retry_after: float | None = None,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        if message is None:
            message = f"Circuit for provider '{provider}' is open - failing fast"
            if retry_after is not None:
                message += f"; next attempt in {retry_after:.2f}s"
        super().__init__(provider, message, ErrorCode.CIRCUIT_OPEN, **kwargs)
        self.next_attempt_at = next_attempt_at
        self.retry_after = retry_after


class NoProviderAvailableError(TranscriptionGatewayError):
    """No enabled and healthy provider could be resolved."""

    def __init__(
        self,
        message: str = "No transcription provider available",
        error_code: str = ErrorCode.NO_PROVIDER,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)


# =============================================================================
# Retry Errors
# =============================================================================


class RetriesExhaustedError(TranscriptionGatewayError):
    """
    Every allowed attempt failed with a retryable error.

    Attributes:
        last_error: The error raised by the final attempt.
        attempts: Number of attempts made.
        provider: Provider identity value, when known.
    """

    def __init__(
        self,
        last_error: BaseException,
        attempts: int,
        provider: str | None = None,
        error_code: str = ErrorCode.RETRIES_EXHAUSTED,
        **kwargs: Any,
    ) -> None:
        target = f" for provider '{provider}'" if provider else ""
        super().__init__(
            f"Operation failed after {attempts} attempts{target}: {last_error}",
            error_code,
            **kwargs,
        )
        self.last_error = last_error
        self.attempts = attempts
        self.provider = provider
