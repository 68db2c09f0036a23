from typing import Optional

from fastapi import Request
from starlette.exceptions import HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import logging

from feedengine.core import error_codes

logger = logging.getLogger("uvicorn.error")


class FeedEngineError(Exception):
    """Base error raised by the engine; carries the HTTP status it maps to."""
    status_code: int = 500
    default_error_code: str = error_codes.INTERNAL_ERROR

    def __init__(self, detail: str, error_code: Optional[str] = None, headers: Optional[dict] = None):
        self.detail = detail
        self.error_code = error_code or self.default_error_code
        self.headers = headers
        super().__init__(detail)


class ValidationError(FeedEngineError):
    """Rejected input; raised before any mutation happens."""
    status_code = 400
    default_error_code = error_codes.VALIDATION_ERROR


class SelfFollowError(ValidationError):
    default_error_code = error_codes.SELF_FOLLOW

    def __init__(self, detail: str = "Cannot follow yourself"):
        super().__init__(detail)


class UnsupportedFilterError(ValidationError):
    default_error_code = error_codes.UNSUPPORTED_FILTER


class InvalidFilterError(ValidationError):
    default_error_code = error_codes.INVALID_FILTER


class NotFoundError(FeedEngineError):
    status_code = 404
    default_error_code = error_codes.NOT_FOUND


class PermissionDeniedError(FeedEngineError):
    status_code = 403
    default_error_code = error_codes.PERMISSION_DENIED


class ConflictError(FeedEngineError):
    status_code = 409
    default_error_code = error_codes.CONFLICT


class InvalidCursorError(FeedEngineError):
    """The pagination token could not be decoded; the caller should restart from page one."""
    status_code = 400
    default_error_code = error_codes.INVALID_CURSOR

    def __init__(self, detail: str = "Invalid cursor format"):
        super().__init__(detail)


class TransientStoreError(FeedEngineError):
    """The store failed in a way that may succeed on retry."""
    status_code = 503
    default_error_code = error_codes.STORE_UNAVAILABLE


class StoreTimeoutError(TransientStoreError):
    status_code = 504
    default_error_code = error_codes.STORE_TIMEOUT

    def __init__(self, detail: str = "The store did not answer in time"):
        super().__init__(detail)


class StoreUnavailableError(TransientStoreError):
    def __init__(self, detail: str = "The store is currently unavailable"):
        super().__init__(detail)


class InternalEngineError(FeedEngineError):
    def __init__(self, detail: str = "An unexpected error occurred"):
        super().__init__(detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors and return a structured JSON response."""
    logger.error(f"Validation error on {request.url}: {exc.errors()}")

    errors = exc.errors()
    # Sanitize un-serializable objects in ctx
    for error in errors:
        ctx = error.get("ctx")
        if ctx and isinstance(ctx.get("error"), Exception):
            ctx["error"] = str(ctx["error"])

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "message": "Validation failed. Please check your request data.",
        },
    )


async def engine_exception_handler(request: Request, exc: FeedEngineError) -> JSONResponse:
    """Render engine errors as {"detail", "error_code"}."""
    if exc.status_code >= 500:
        logger.error(f"Engine error on {request.url}: {exc.error_code} {exc.detail}")
    else:
        logger.info(f"Rejected request on {request.url}: {exc.error_code} {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code
        },
        headers=exc.headers or {},
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Custom HTTP exception handler for better error responses."""
    if isinstance(exc, HTTPException):
        logger.error(f"HTTP error on {request.url}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=exc.headers or {},
        )

    logger.error(f"Unexpected error on {request.url}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred"},
    )
