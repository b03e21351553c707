"""API error handling middleware: consistent error responses.

Registers FastAPI exception handlers that convert calendar exceptions into
standardised ``{"error": {"code": "...", "message": "...", "provider": "..."}}``
JSON responses.

Status code mapping:
- ``UnsupportedProviderError`` → 400 Bad Request
- ``ValueError`` → 400 Bad Request
- ``AuthError`` → 401 Unauthorized
- ``IntegrationNotConnectedError`` → 404 Not Found
- ``ProviderAPIError`` → 502 Bad Gateway
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobai_calendar.api.models import ErrorDetail, ErrorResponse
from jobai_calendar.calendar.errors import (
    AuthError,
    CalendarError,
    IntegrationNotConnectedError,
    ProviderAPIError,
    UnsupportedProviderError,
    safe_error_message,
)

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    code: str,
    message: str,
    *,
    provider: str | None = None,
    details: dict | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, provider=provider, details=details)
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_unsupported_provider(
    request: Request,
    exc: UnsupportedProviderError,
) -> JSONResponse:
    """Return 400 for an unknown provider id."""
    logger.info("Unsupported provider: %s", exc.provider)
    return _error_response(400, "UNSUPPORTED_PROVIDER", str(exc), provider=exc.provider)


async def _handle_auth_error(
    request: Request,
    exc: AuthError,
) -> JSONResponse:
    """Return 401 when a code exchange or token refresh failed."""
    logger.warning("Calendar auth failure (provider=%s): %s", exc.provider, exc)
    return _error_response(401, "AUTH_ERROR", safe_error_message(str(exc)), provider=exc.provider)


async def _handle_not_connected(
    request: Request,
    exc: IntegrationNotConnectedError,
) -> JSONResponse:
    """Return 404 when the caller has no active integration for the provider."""
    logger.info("Integration not connected (provider=%s)", exc.provider)
    return _error_response(404, "INTEGRATION_NOT_CONNECTED", str(exc), provider=exc.provider)


async def _handle_provider_api_error(
    request: Request,
    exc: ProviderAPIError,
) -> JSONResponse:
    """Return 502 when the upstream calendar API failed."""
    logger.warning("Provider API error: %s", exc)
    return _error_response(
        502,
        "PROVIDER_API_ERROR",
        str(exc),
        provider=exc.provider,
        details={"status_code": exc.status_code},
    )


async def _handle_calendar_error(
    request: Request,
    exc: CalendarError,
) -> JSONResponse:
    logger.error("Unmapped calendar error: %s", exc, exc_info=exc)
    return _error_response(500, "INTERNAL_ERROR", "Internal server error", provider=exc.provider)


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    return _error_response(400, "VALIDATION_ERROR", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    Sits above the Starlette exception handler layer so exceptions without a
    registered handler still get the standard error envelope.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Starlette resolves handlers by walking the exception's MRO, so the
    ``CalendarError`` fallback only applies to subclasses without a handler
    of their own.
    """
    app.add_exception_handler(UnsupportedProviderError, _handle_unsupported_provider)  # type: ignore[arg-type]
    app.add_exception_handler(AuthError, _handle_auth_error)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrationNotConnectedError, _handle_not_connected)  # type: ignore[arg-type]
    app.add_exception_handler(ProviderAPIError, _handle_provider_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarError, _handle_calendar_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
