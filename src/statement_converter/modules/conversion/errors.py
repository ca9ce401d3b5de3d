from __future__ import annotations

from typing import Any


class ConversionError(Exception):
    """Client-facing failure of a conversion request, rendered as a JSON error body."""

    status_code: int = 500
    error: str = "Conversion failed"
    default_message: str = "Something went wrong while converting your statement."

    def __init__(
        self,
        message: str | None = None,
        *,
        error: str | None = None,
        remaining: int | None = None,
        limit: int | None = None,
    ):
        self.message = message or self.default_message
        if error is not None:
            self.error = error
        self.remaining = remaining
        self.limit = limit
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.remaining is not None:
            payload["remaining"] = self.remaining
        if self.limit is not None:
            payload["limit"] = self.limit
        return payload


class InvalidUploadError(ConversionError):
    status_code = 400
    error = "Invalid upload"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason, error=reason)


class QuotaExceededError(ConversionError):
    status_code = 429
    error = "Rate limit exceeded"

    @classmethod
    def for_limit(cls, *, limit: int, authenticated: bool) -> QuotaExceededError:
        if authenticated:
            message = f"You've used all {limit} conversions for today. Try again later."
        else:
            message = (
                f"You've used all {limit} free conversions. "
                "Sign in for more, or try again later."
            )
        return cls(message, remaining=0, limit=limit)


class UpstreamRateLimitedConversionError(ConversionError):
    status_code = 429
    error = "Rate limited"
    default_message = "The conversion service is busy. Please try again in a moment."


class UpstreamUnavailableError(ConversionError):
    status_code = 503
    error = "Service unavailable"
    default_message = "Conversion service is temporarily unavailable."


class UsageTrackingUnavailableError(ConversionError):
    status_code = 503
    error = "Service unavailable"
    default_message = "Usage tracking is temporarily unavailable. Please try again later."


class NoTransactionsFoundError(ConversionError):
    status_code = 422
    error = "No transactions found"
    default_message = (
        "Could not extract transactions from this document. "
        "Please ensure it's a valid bank statement."
    )


class ConversionFailedError(ConversionError):
    status_code = 500
    error = "Conversion failed"
