"""
Error taxonomy and the FastAPI handlers that render it.

Services raise HomeChefError subclasses; the handlers registered here turn
them (and framework/store exceptions) into the error envelope:

    {"success": false, "error": <kind>, "message": ..., "details": {...}}
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from homechef.core.validation import field_errors

logger = logging.getLogger(__name__)


class HomeChefError(Exception):
    """Base for errors that map onto a taxonomy kind and HTTP status."""

    kind = "Internal"
    status_code = 500

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.kind
        self.details = details
        super().__init__(self.message)


class InvalidRequest(HomeChefError):
    kind = "InvalidRequest"
    status_code = 400


class Unauthenticated(HomeChefError):
    kind = "Unauthenticated"
    status_code = 401


class Forbidden(HomeChefError):
    kind = "Forbidden"
    status_code = 403


class NotFound(HomeChefError):
    kind = "NotFound"
    status_code = 404


class InvalidTransition(HomeChefError):
    """State machine rejected a command; carries the state that was observed."""

    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, message: str, current_state: str, details: dict[str, Any] | None = None):
        merged = {"current_state": current_state}
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.current_state = current_state


class Conflict(HomeChefError):
    kind = "Conflict"
    status_code = 409


class AlreadySettled(Conflict):
    """A tip for this recipient kind has already left the pending state."""


class RateLimited(HomeChefError):
    kind = "RateLimited"
    status_code = 429


class StoreUnavailable(HomeChefError):
    kind = "StoreUnavailable"
    status_code = 503


class Internal(HomeChefError):
    kind = "Internal"
    status_code = 500


_HTTP_STATUS_KINDS = {
    400: InvalidRequest,
    401: Unauthenticated,
    403: Forbidden,
    404: NotFound,
    405: InvalidRequest,
    409: Conflict,
    422: InvalidRequest,
    429: RateLimited,
    503: StoreUnavailable,
}


def error_body(kind: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": kind, "message": message}
    if details:
        body["details"] = details
    return body


def error_response(exc: HomeChefError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.kind, exc.message, exc.details),
        headers=headers,
    )


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def _homechef_error_handler(request: Request, exc: HomeChefError) -> JSONResponse:
    if isinstance(exc, Internal):
        logger.error("Internal error request_id=%s: %s", _request_id(request), exc.message)
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = field_errors(exc.errors())
    return error_response(InvalidRequest("Request validation failed", details))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_cls = _HTTP_STATUS_KINDS.get(exc.status_code, Internal)
    mapped = error_cls(str(exc.detail) if exc.detail else None)
    mapped.status_code = exc.status_code
    return error_response(mapped, headers=getattr(exc, "headers", None))


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return error_response(RateLimited(f"Rate limit exceeded: {exc.detail}"))


async def _store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(
        "Store unavailable request_id=%s: %s", _request_id(request), type(exc).__name__
    )
    return error_response(StoreUnavailable("Store temporarily unavailable, retry later"))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.exception("Unhandled error request_id=%s", request_id)
    details = {"correlation_id": request_id} if request_id else None
    return error_response(Internal("Internal server error", details))


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-rendering handlers for every error the API can raise."""
    app.add_exception_handler(HomeChefError, _homechef_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(OperationalError, _store_error_handler)
    app.add_exception_handler(PoolTimeoutError, _store_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
