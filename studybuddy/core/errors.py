"""
Error taxonomy and FastAPI handlers.

Every error response has the same shape:

    {"error": {"code", "message", "request_id", "details"?}, "detail": message}

and carries the x-request-id header. Transient store errors also carry
Retry-After so the desktop client can back off.
"""

import builtins
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from studybuddy.core.logging import LOGGER_NAME, get_request_id


logger = logging.getLogger(LOGGER_NAME)

STORE_RETRY_AFTER_SECONDS = 1


class AppError(Exception):
    code = "app_error"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id
        self.details = details


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class UnknownQuotaError(AppError):
    """Quota name not defined by the caller's tier (fail closed)."""
    code = "unknown_quota"
    status_code = 400


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403


class ConcurrentUpdateConflict(AppError):
    """Conditional increment lost a race; safe to re-read and retry."""
    code = "conflict"
    status_code = 409
    retryable = True


class StoreUnavailableError(AppError):
    """Persistence store unreachable or retries exhausted (transient)."""
    code = "store_unavailable"
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Usage service is temporarily unavailable, please try again", **kwargs):
        super().__init__(message, **kwargs)


_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 503: "unavailable"}


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex


def _json_error(
    rid: str,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message, "request_id": rid}
    if details:
        error["details"] = details
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = rid
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)} if exc.retryable else None
    return _json_error(rid, exc.status_code, exc.code, exc.message, exc.details, headers)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _json_error(rid, exc.status_code, code, str(exc.detail or "HTTP error"))


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _json_error(rid, 500, "internal_error", "Unexpected error")
