"""Error taxonomy and normalized error handlers.

Every failure the economy can produce maps to a stable ``code`` so the calling
surface can render a specific message.
"""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from crave.core.logging import get_request_id


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
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = details or {}


# Validation -----------------------------------------------------------------

class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class UnauthenticatedError(AppError):
    code = "unauthenticated"
    status_code = 401


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


# Business rules ---------------------------------------------------------------

class AccountNotFoundError(NotFoundError):
    code = "account_not_found"


class ItemUnavailableError(NotFoundError):
    code = "item_unavailable"


class LevelNotFoundError(NotFoundError):
    code = "level_not_found"


class ThemeNotUnlockedError(NotFoundError):
    code = "theme_not_unlocked"


class NoSkipAvailableError(NotFoundError):
    code = "no_skip_available"


class ForbiddenError(AppError):
    code = "forbidden"
    status_code = 403


class TierInsufficientError(AppError):
    code = "tier_insufficient"
    status_code = 403


class InsufficientFundsError(AppError):
    code = "insufficient_funds"
    status_code = 402


class DurationMismatchError(AppError):
    code = "duration_mismatch"
    status_code = 400


class PauseAlreadyActiveError(AppError):
    code = "pause_already_active"
    status_code = 409


class AlreadyCompletedError(AppError):
    code = "already_completed"
    status_code = 409


# Infrastructure ---------------------------------------------------------------

class BusyError(AppError):
    """Per-user lock could not be acquired in time. Nothing was applied."""
    code = "busy"
    status_code = 503
    retryable = True


class UnavailableError(AppError):
    """Store failed after bounded retries. Nothing was applied."""
    code = "unavailable"
    status_code = 503
    retryable = True


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error: Dict[str, Any] = {"code": code, "message": message, "request_id": request_id}
    if details:
        error["details"] = details
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("crave")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    if exc.retryable:
        response.headers["Retry-After"] = "1"
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("crave")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    payload = _error_payload("validation_error", "Invalid request", rid, {"fields": fields})
    logging.getLogger("crave").warning(
        "request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400}
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("crave")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
