"""
API Error Mapping - typed exceptions to the uniform error envelope.

The HTTP status is chosen from the exception category only.
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from studycards.exceptions import (
    AlreadySubscribedError,
    ErrorCategory,
    PendingPaymentExistsError,
    QuotaExceededError,
    StudyCardsError,
    UnsupportedCurrencyError,
)
from studycards.models.api import ErrorEnvelope
from studycards.observability.metrics import metrics

logger = get_logger(__name__)

CATEGORY_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.QUOTA: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.UPSTREAM_RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.UPSTREAM: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCategory.GATEWAY: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCategory.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_HTTP_CODES: dict[int, str] = {
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


def status_for(exc: StudyCardsError) -> int:
    """HTTP status for an application exception."""
    return CATEGORY_STATUS.get(exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_response(
    status_code: int, message: str, code: str, details: dict[str, Any] | None = None
) -> JSONResponse:
    """Render the error envelope."""
    envelope = ErrorEnvelope(error=message, code=code, details=details)
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(mode="json", exclude_none=True),
    )


def _details_for(exc: StudyCardsError) -> dict[str, Any] | None:
    """Client-safe extra fields for errors the UI acts on."""
    if isinstance(exc, QuotaExceededError):
        return {
            "usage": {
                "generated_this_month": exc.generated_this_month,
                "monthly_limit": exc.monthly_limit,
                "remaining": max(0, exc.monthly_limit - exc.generated_this_month),
            }
        }
    if isinstance(exc, AlreadySubscribedError) and exc.expires_at is not None:
        return {"subscription_expires_at": exc.expires_at.isoformat()}
    if isinstance(exc, PendingPaymentExistsError):
        return {"transaction_id": exc.transaction_id}
    if isinstance(exc, UnsupportedCurrencyError):
        return {"supported_currencies": exc.supported}
    return None


async def studycards_error_handler(request: Request, exc: StudyCardsError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        metrics.record_error(type(exc).__name__, request.url.path)
        logger.error(
            "request_error",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            code=exc.code,
            error=exc.message,
        )
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            code=exc.code,
        )
    return error_response(status_code, exc.message, exc.code, _details_for(exc))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log detailed validation errors and answer with a 400 envelope."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Invalid request",
        "validation_error",
        {"errors": sanitized_errors},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    response = error_response(exc.status_code, message, code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log with traceback, never leak details."""
    metrics.record_error(type(exc).__name__, request.url.path)
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        "internal_error",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all envelope handlers to the application."""
    app.add_exception_handler(StudyCardsError, studycards_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
