"""Provider adapter contract and the shared OAuth/REST plumbing.

Adapters hold no per-user state: every authenticated call loads the user's
integration from the store, refreshes the access token when it has expired,
and threads the token explicitly through the request helpers.  The shared
``httpx.AsyncClient`` carries no credentials of its own.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from jobai_calendar.calendar.errors import (
    AuthError,
    IntegrationNotConnectedError,
    ProviderAPIError,
    safe_error_message,
)
from jobai_calendar.calendar.models import (
    CalendarEvent,
    CalendarEventUpdate,
    CalendarIntegration,
    CalendarProviderName,
    TokenGrant,
)

if TYPE_CHECKING:
    from jobai_calendar.calendar.store import CalendarStore
    from jobai_calendar.config import OAuthClientConfig

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
# Refresh slightly before the provider-reported expiry to avoid racing it.
TOKEN_EXPIRY_SKEW = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _response_error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of a provider error body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return safe_error_message(message)
        description = payload.get("error_description")
        if isinstance(description, str) and description.strip():
            return safe_error_message(description)
        if isinstance(error_payload, str) and error_payload.strip():
            return safe_error_message(error_payload)

    raw_text = response.text.strip()
    if raw_text:
        return safe_error_message(raw_text)
    return "Request failed without an error payload"


class CalendarProviderAdapter(abc.ABC):
    """Translate between canonical ``CalendarEvent`` objects and one provider's API."""

    token_url: str
    request_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    def __init__(
        self,
        *,
        store: CalendarStore,
        http_client: httpx.AsyncClient,
        oauth: OAuthClientConfig,
        default_timezone: str = "UTC",
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self._store = store
        self._http_client = http_client
        self._oauth = oauth
        self._default_timezone = default_timezone
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    @property
    @abc.abstractmethod
    def name(self) -> CalendarProviderName:
        """Provider identifier used for storage and routing."""

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_auth_url(self, user_id: str) -> str:
        """Build the provider authorization URL with ``state=user_id``."""

    @abc.abstractmethod
    def _token_request_data(self, *, grant_type: str, value: str) -> dict[str, str]:
        """Form body for the token endpoint (``authorization_code`` or ``refresh_token``)."""

    async def handle_callback(self, code: str, user_id: str) -> None:
        """Exchange an authorization code and persist an active integration."""
        grant = await self._post_token(
            self._token_request_data(grant_type="authorization_code", value=code)
        )
        await self._store.upsert_integration(user_id, self.name, grant, connected_at=_utcnow())

    async def disconnect(self, user_id: str) -> None:
        """Deactivate the integration and clear its tokens.  Idempotent."""
        existed = await self._store.deactivate_integration(user_id, self.name)
        if existed:
            logger.info("Calendar disconnected: user=%s provider=%s", user_id, self.name)
        else:
            logger.debug(
                "Calendar disconnect for unknown integration: user=%s provider=%s",
                user_id,
                self.name,
            )

    async def _post_token(self, data: dict[str, str]) -> TokenGrant:
        grant_type = data.get("grant_type", "")
        try:
            response = await self._http_client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.request_timeout,
            )
        except httpx.HTTPError as exc:
            raise AuthError(
                f"{self.name} token request failed ({grant_type}): {safe_error_message(str(exc))}",
                provider=self.name,
            ) from exc

        if response.status_code != 200:
            raise AuthError(
                f"{self.name} token request failed ({grant_type}, {response.status_code}): "
                f"{_response_error_message(response)}",
                provider=self.name,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError(
                f"{self.name} token endpoint returned invalid JSON", provider=self.name
            ) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise AuthError(
                f"{self.name} token response is missing a non-empty access_token",
                provider=self.name,
            )

        expires_at: datetime | None = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float, str)):
            try:
                expires_at = _utcnow() + timedelta(seconds=int(expires_in))
            except ValueError:
                expires_at = None

        refresh_token = payload.get("refresh_token")
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token or None if isinstance(refresh_token, str) else None,
            expires_at=expires_at,
        )

    async def _active_integration(self, user_id: str) -> CalendarIntegration:
        integration = await self._store.get_integration(user_id, self.name)
        if integration is None or not integration.is_active:
            raise IntegrationNotConnectedError(self.name, user_id)
        if not integration.access_token and not integration.refresh_token:
            raise IntegrationNotConnectedError(self.name, user_id)
        return integration

    async def _refresh(self, integration: CalendarIntegration) -> str:
        if not integration.refresh_token:
            raise AuthError(
                f"{self.name} access token expired and no refresh token is stored",
                provider=self.name,
            )
        grant = await self._post_token(
            self._token_request_data(grant_type="refresh_token", value=integration.refresh_token)
        )
        await self._store.update_tokens(integration.user_id, self.name, grant)
        integration.access_token = grant.access_token
        integration.expires_at = grant.expires_at
        if grant.refresh_token:
            integration.refresh_token = grant.refresh_token
        return grant.access_token

    async def _access_token(self, integration: CalendarIntegration) -> str:
        if not integration.access_token or integration.is_expired(_utcnow() + TOKEN_EXPIRY_SKEW):
            return await self._refresh(integration)
        return integration.access_token

    # ------------------------------------------------------------------
    # REST helpers
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        user_id: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Authenticated request returning the decoded JSON body.

        A 401 forces one token refresh and retry.  429/503 responses are retried
        with exponential backoff (``Retry-After`` honoured on 429).  Any other
        non-2xx status raises ``ProviderAPIError``.
        """
        integration = await self._active_integration(user_id)
        access_token = await self._access_token(integration)
        request_options: dict[str, Any] = {
            "params": params,
            "json_body": json_body,
            "extra_headers": extra_headers,
        }

        response = await self._request_with_retries(method, url, access_token, **request_options)
        if response.status_code == 401:
            logger.info("%s returned 401, refreshing token: user=%s", self.name, user_id)
            access_token = await self._refresh(integration)
            response = await self._request_with_retries(
                method, url, access_token, **request_options
            )

        if not response.is_success:
            raise ProviderAPIError(
                provider=self.name,
                status_code=response.status_code,
                message=_response_error_message(response),
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderAPIError(
                provider=self.name,
                status_code=response.status_code,
                message="response body is not valid JSON",
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderAPIError(
                provider=self.name,
                status_code=response.status_code,
                message="expected a JSON object response",
            )
        return payload

    async def _request_with_retries(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        request_options: dict[str, Any] = {
            "params": params,
            "json_body": json_body,
            "extra_headers": extra_headers,
        }
        response = await self._request_once(method, url, access_token, **request_options)
        retry = 0
        while response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < self._max_retries:
            backoff = self._backoff_seconds * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "%s API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                self.name,
                response.status_code,
                backoff,
                retry + 1,
                self._max_retries,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(method, url, access_token, **request_options)
            retry += 1
        return response

    async def _request_once(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        extra_headers: dict[str, str] | None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        if extra_headers:
            headers.update(extra_headers)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.request_timeout,
            )
        except httpx.HTTPError as exc:
            raise ProviderAPIError(
                provider=self.name,
                status_code=None,
                message=f"{type(exc).__name__}: {exc}",
            ) from exc

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_event(self, user_id: str, event: CalendarEvent) -> CalendarEvent:
        """Create *event* in the user's primary calendar."""

    @abc.abstractmethod
    async def update_event(
        self, user_id: str, event_id: str, update: CalendarEventUpdate
    ) -> CalendarEvent:
        """Merge the supplied fields into the provider event and save it."""

    @abc.abstractmethod
    async def delete_event(self, user_id: str, event_id: str) -> None:
        """Delete an event; an already-missing event is not an error."""

    @abc.abstractmethod
    async def sync_events(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """List up to 250 events in ``[start, end)`` with recurrences expanded."""

    @abc.abstractmethod
    async def check_conflicts(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Timed (non all-day) events overlapping ``[start, end)``."""
