"""Shared Pydantic response models for the calendar API."""

from __future__ import annotations

from pydantic import BaseModel

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    provider: str | None = None
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
