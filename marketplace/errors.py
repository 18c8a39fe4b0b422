"""Error taxonomy for webhook processing and product sync.

- Unauthorized: bad or missing webhook signature (the only webhook-facing error)
- ProviderError: a fulfillment provider API call failed
- SyncError family: surfaced to callers of sync(), each with a stable code,
  an HTTP status and structured ``data`` for the admin dashboard
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class MarketplaceError(Exception):
    """Base class for all errors raised by this package."""


class Unauthorized(MarketplaceError):
    """Webhook signature missing, malformed or invalid."""

    http_status = 401

    def __init__(self, message: str = "Invalid webhook signature"):
        self.message = message
        super().__init__(message)


class ProviderErrorType(str, Enum):
    """Classification of fulfillment provider failures."""

    RATE_LIMIT = "RATE_LIMIT"                    # 429
    TIMEOUT = "TIMEOUT"                          # request/read timeout
    API_ERROR = "API_ERROR"                      # anything else
    AUTH = "AUTH"                                # 401/403
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"  # 502/503/504


class ProviderError(MarketplaceError):
    """A call to a fulfillment provider's API failed."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"{provider}: {message}")

    @property
    def error_type(self) -> ProviderErrorType:
        return classify_provider_error(self)


def classify_provider_error(error: BaseException) -> ProviderErrorType:
    """Classify a provider failure into a ProviderErrorType.

    Inspects the HTTP status code when one is attached, then falls back to
    the exception type and message.
    """
    status = getattr(error, "status_code", None)
    if status == 429:
        return ProviderErrorType.RATE_LIMIT
    if status in (401, 403):
        return ProviderErrorType.AUTH
    if status in (502, 503, 504):
        return ProviderErrorType.SERVICE_UNAVAILABLE
    if status == 408:
        return ProviderErrorType.TIMEOUT

    error_str = str(error).lower()
    error_type = type(error).__name__

    if "429" in error_str or "rate limit" in error_str or "too many requests" in error_str:
        return ProviderErrorType.RATE_LIMIT
    if "401" in error_str or "403" in error_str or "unauthorized" in error_str:
        return ProviderErrorType.AUTH
    if "timeout" in error_str or "timed out" in error_str or "Timeout" in error_type:
        return ProviderErrorType.TIMEOUT
    if any(code in error_str for code in ("502", "503", "504")):
        return ProviderErrorType.SERVICE_UNAVAILABLE
    if "unavailable" in error_str:
        return ProviderErrorType.SERVICE_UNAVAILABLE

    return ProviderErrorType.API_ERROR


class SyncError(MarketplaceError):
    """Base for errors surfaced to callers of the product sync."""

    code = "SYNC_FAILED"
    http_status = 500
    default_message = "Sync operation failed"

    def __init__(self, message: str | None = None, data: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.data = data or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class SyncInProgressError(SyncError):
    code = "SYNC_IN_PROGRESS"
    http_status = 409
    default_message = "Sync is already in progress"


class SyncTimeoutError(SyncError):
    code = "SYNC_TIMEOUT"
    http_status = 408
    default_message = "Sync timed out"


class SyncProviderError(SyncError):
    code = "SYNC_PROVIDER_ERROR"
    http_status = 503
    default_message = "Fulfillment provider temporarily unavailable"


class SyncFailedError(SyncError):
    code = "SYNC_FAILED"
    http_status = 500
    default_message = "Sync operation failed"
