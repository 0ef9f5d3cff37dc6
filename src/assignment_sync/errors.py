"""
Error taxonomy for calendar synchronization.

Every error carries two messages: ``user_message`` is safe to show to the
interpreter, ``raw`` is the provider's original error text and only goes to
logs and the audit trail.
"""

from __future__ import annotations

from typing import Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError


class CalendarSyncError(Exception):
    default_message = "Failed to sync to calendar"

    def __init__(
        self,
        user_message: Optional[str] = None,
        raw: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.user_message = user_message or self.default_message
        self.raw = raw or self.user_message
        self.status_code = status_code
        super().__init__(self.raw)


class ValidationError(CalendarSyncError):
    """Assignment data cannot be turned into a calendar event."""

    default_message = "Invalid assignment data"

    def __init__(self, reason: str):
        super().__init__(f"Invalid assignment data: {reason}", raw=reason)


class AuthExchangeError(CalendarSyncError):
    default_message = "Failed to connect calendar"


class NotConnectedError(CalendarSyncError):
    default_message = "No calendar connection. Please reconnect Google Calendar."


class AuthExpiredError(CalendarSyncError):
    default_message = "Your Google Calendar connection has expired. Please reconnect."


class PermissionDeniedError(CalendarSyncError):
    default_message = "Permission denied. Please disconnect and reconnect Google Calendar."


class EventNotFoundError(CalendarSyncError):
    default_message = "Calendar event not found. It may have been deleted in Google Calendar."


class RateLimitedError(CalendarSyncError):
    default_message = "Too many requests. Please wait a moment and try again."


class ProviderUnavailableError(CalendarSyncError):
    default_message = "Google Calendar is temporarily unavailable. Please try again later."


class ProviderError(CalendarSyncError):
    pass


def _http_error_status(error: HttpError) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None and getattr(error, "resp", None) is not None:
        status = getattr(error.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _http_error_content(error: HttpError) -> str:
    content = getattr(error, "content", b"") or b""
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content)


def classify_provider_error(error: BaseException) -> CalendarSyncError:
    """Translate a provider/transport exception into the sync taxonomy."""
    if isinstance(error, CalendarSyncError):
        return error

    raw = str(error) or error.__class__.__name__

    if isinstance(error, RefreshError):
        return AuthExpiredError(raw=raw, status_code=401)

    if isinstance(error, HttpError):
        status = _http_error_status(error)
        if status == 401 or "invalid_grant" in raw:
            return AuthExpiredError(raw=raw, status_code=status)
        if status == 403:
            # Google reports quota exhaustion as 403 with a rate-limit reason
            content = _http_error_content(error)
            if "rateLimitExceeded" in content or "userRateLimitExceeded" in content:
                return RateLimitedError(raw=raw, status_code=status)
            return PermissionDeniedError(raw=raw, status_code=status)
        if status in (404, 410):
            return EventNotFoundError(raw=raw, status_code=status)
        if status == 429:
            return RateLimitedError(raw=raw, status_code=status)
        if status is not None and status >= 500:
            return ProviderUnavailableError(raw=raw, status_code=status)
        return ProviderError(raw=raw, status_code=status)

    if isinstance(error, (TransportError, httplib2.HttpLib2Error, TimeoutError, ConnectionError)):
        return ProviderUnavailableError(raw=raw)

    if "invalid_grant" in raw:
        return AuthExpiredError(raw=raw, status_code=401)

    return ProviderError(raw=raw)
