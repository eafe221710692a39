"""Errors raised by the YouTube API client."""

from typing import Optional

RETRYABLE_STATUS_CODES = frozenset([429, 500, 502, 503, 504])
RETRYABLE_REASONS = frozenset(["rateLimitExceeded", "userRateLimitExceeded", "backendError"])


class PlatformApiError(Exception):
    """A YouTube API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason

    @property
    def retryable(self) -> bool:
        """Transport failures, throttling and server errors are worth retrying."""
        if self.status_code is None:
            return True
        return self.status_code in RETRYABLE_STATUS_CODES or self.reason in RETRYABLE_REASONS

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (HTTP {self.status_code}, reason={self.reason})"


class PlatformAuthError(PlatformApiError):
    """Missing, expired or rejected credentials."""

    @property
    def retryable(self) -> bool:
        return False
