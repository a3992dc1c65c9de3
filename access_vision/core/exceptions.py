"""Custom exceptions for Access Vision."""

from __future__ import annotations


class AccessVisionError(Exception):
    """Base exception for all Access Vision errors."""

    pass


class RecognitionError(AccessVisionError):
    """A recognition round trip did not produce a usable detection list."""

    pass


class RecognitionTransportError(RecognitionError):
    """Network failure or non-2xx answer from the recognition service.

    Attributes:
        status_code: HTTP status, or None when no response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RecognitionTransportError):
    """Recognition service answered 429."""

    pass


class QuotaExceededError(RecognitionTransportError):
    """Recognition service answered 402 (quota or payment)."""

    pass


class MalformedResponseError(RecognitionError):
    """Recognition service answered 2xx with a body that is not a JSON object."""

    pass


class GatewayError(AccessVisionError):
    """Roster/log gateway operation failed."""

    pass


class DatabaseError(GatewayError):
    """Database operation error."""

    pass


class CircuitOpenError(GatewayError):
    """Raised when a circuit breaker is open and the call is rejected."""

    pass


class CameraUnavailableError(AccessVisionError):
    """Camera could not be opened (missing device or permission denied)."""

    pass


class ValidationError(AccessVisionError):
    """Input validation error."""

    pass


class SessionNotFoundError(AccessVisionError):
    """No detection session exists for the given id."""

    pass
