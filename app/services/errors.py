"""Error taxonomy for provider calls and the sync endpoints."""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 500


class ErrorType(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


TERMINAL_TYPES = frozenset({
    ErrorType.UNAUTHORIZED,
    ErrorType.CLIENT_ERROR,
    ErrorType.CONFIG_ERROR,
    ErrorType.VALIDATION_ERROR,
})


class SyncError(Exception):
    """A classified failure from a provider call or a sync request."""

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        self.attempts = 1
        # set when a forced token refresh was spent before this error was raised
        self.token_refreshed = False

    @property
    def is_terminal(self) -> bool:
        return self.error_type in TERMINAL_TYPES

    def to_dict(self) -> dict:
        return {"error": self.message, "error_type": self.error_type.value}

    def __repr__(self) -> str:
        return f"SyncError({self.error_type.value}, {self.message!r}, status={self.status_code})"


class ConfigError(SyncError):
    """Provider credentials or environment are missing."""

    def __init__(self, message: str):
        super().__init__(ErrorType.CONFIG_ERROR, message)


class InvalidRequestError(SyncError):
    """Malformed request to one of our own endpoints."""

    def __init__(self, message: str):
        super().__init__(ErrorType.VALIDATION_ERROR, message)


def classify_status(status_code: int) -> ErrorType:
    """Map an HTTP status code onto the error taxonomy."""
    if status_code == 401:
        return ErrorType.UNAUTHORIZED
    if status_code == 429:
        return ErrorType.RATE_LIMITED
    if status_code >= 500:
        return ErrorType.SERVER_ERROR
    return ErrorType.CLIENT_ERROR


def parse_retry_after(headers: httpx.Headers, now: Optional[datetime] = None) -> Optional[float]:
    """
    Read a wait hint from response headers.

    Supports Retry-After as delta-seconds or HTTP date, and Fitbit's
    Fitbit-Rate-Limit-Reset (seconds until the hourly quota resets).
    """
    for header in ("Retry-After", "Fitbit-Rate-Limit-Reset"):
        value = headers.get(header)
        if not value:
            continue
        value = value.strip()
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring unparseable {header} header: {value!r}")
            continue
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        current = now or datetime.now(timezone.utc)
        return max(0.0, (when - current).total_seconds())
    return None


def error_from_response(response: httpx.Response, context: str) -> SyncError:
    """Build a classified error from a non-2xx response."""
    error_type = classify_status(response.status_code)
    body = response.text[:MAX_BODY_CHARS] if response.text else ""
    retry_after = parse_retry_after(response.headers) if error_type == ErrorType.RATE_LIMITED else None
    message = f"{context}: HTTP {response.status_code}"
    if body:
        message = f"{message}: {body[:200]}"
    return SyncError(
        error_type,
        message,
        status_code=response.status_code,
        body=body,
        retry_after=retry_after,
    )


def error_from_exception(exc: Exception, context: str) -> SyncError:
    """Classify an exception raised while talking to a provider."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_response(exc.response, context)
    if isinstance(exc, httpx.TransportError):
        return SyncError(ErrorType.NETWORK_ERROR, f"{context}: {type(exc).__name__}: {exc}")
    # Anything else (bad JSON, unexpected payload shape) will not improve on retry
    return SyncError(ErrorType.CLIENT_ERROR, f"{context}: {type(exc).__name__}: {exc}")
