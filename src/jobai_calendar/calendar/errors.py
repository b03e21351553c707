"""Error taxonomy for calendar provider and sync operations.

Single-event operations raise these to the caller.  Multi-provider
orchestration catches them per provider and records them on the
``SyncStatus`` instead.
"""

from __future__ import annotations

import re

SYSTEM_ERROR_TAG = "SYSTEM"

_MAX_ERROR_MESSAGE_LENGTH = 200
_CREDENTIAL_KEYS = r"client_secret|refresh_token|access_token|id_token"


def redact_credentials(message: str) -> str:
    """Mask token and secret values that may appear in provider error bodies."""
    redacted = message
    # key=value pairs (form bodies, query strings)
    redacted = re.sub(
        rf"(?i)\b({_CREDENTIAL_KEYS})\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON style quoted values
    redacted = re.sub(
        rf"""(?i)(['"]?(?:{_CREDENTIAL_KEYS})['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(r"(?i)\b(bearer)\s+[A-Za-z0-9._~+/=-]+", r"\1 [REDACTED]", redacted)
    return redacted


def safe_error_message(message: str) -> str:
    """Redact credentials, collapse whitespace and truncate to 200 chars."""
    cleaned = " ".join(redact_credentials(message).split())
    return cleaned[:_MAX_ERROR_MESSAGE_LENGTH]


class CalendarError(Exception):
    """Base class for calendar integration errors."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class AuthError(CalendarError):
    """OAuth code exchange or token refresh failed."""


class IntegrationNotConnectedError(CalendarError):
    """The user has no active integration for the provider."""

    def __init__(self, provider: str, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"{provider} calendar not connected", provider=provider)


class ProviderAPIError(CalendarError):
    """Transport failure or non-2xx response from a provider API."""

    def __init__(self, *, provider: str, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.error_message = safe_error_message(message)
        status = status_code if status_code is not None else "transport"
        super().__init__(
            f"{provider} calendar API request failed ({status}): {self.error_message}",
            provider=provider,
        )


class ProviderTimeoutError(ProviderAPIError):
    """A provider call exceeded its time budget."""

    def __init__(self, *, provider: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            provider=provider,
            status_code=None,
            message=f"timed out after {timeout_seconds:g}s",
        )


class UnsupportedProviderError(CalendarError):
    """Unknown provider identifier."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported calendar provider: {provider}", provider=provider)


class SyncSystemError(CalendarError):
    """Orchestration-level failure recorded on a sync run under the SYSTEM tag.

    Never raised past ``sync_all_calendars``; it only exists so the failure has
    a typed home while the status is being assembled.
    """
