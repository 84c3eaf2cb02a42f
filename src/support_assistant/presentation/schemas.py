"""HTTP response envelopes for the REST API.

Request and payload models live in ``domain.models``; this module only adds
the ``{"success": ..., "data": ...}`` wrapping used by every route.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Successful response body."""

    success: bool = True
    data: T


class MessageBody(BaseModel):
    """Successful response that only carries a human-readable message."""

    success: bool = True
    message: str


class ErrorBody(BaseModel):
    """Failure response body."""

    success: bool = False
    error: str
    message: str | None = None


class SearchResults(BaseModel, Generic[T]):
    results: list[T]
    total: int


def error_response(status_code: int, error: str, exc: Exception | None = None) -> JSONResponse:
    """Build a JSON error response, carrying the exception message if given."""
    body = ErrorBody(error=error, message=str(exc) if exc else None)
    return JSONResponse(status_code=status_code, content=body.model_dump())
