"""
Error Handling Module

This module provides the error taxonomy for the flag service with:
- Custom exception hierarchy (not_found, conflict, bad_request, internal)
- Translation of store integrity errors into that hierarchy
- Standardized error responses for the HTTP boundary
- Logging and metrics integration
"""

from typing import Any, Dict, Optional

import prometheus_client
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from flagkeeper.core.logging import get_logger

logger = get_logger(__name__)

ERROR_COUNTER = prometheus_client.Counter(
    "flagkeeper_errors_total",
    "Total count of flag service errors surfaced to the boundary",
    ["error_code", "status_code"]
)

# PostgreSQL SQLSTATE codes for integrity violations
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"


class ErrorBody(BaseModel):
    """Error payload returned to clients."""
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: ErrorBody


class AppException(Exception):
    """Base exception class for all application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "internal",
        extra: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.extra = extra or {}
        super().__init__(message)


class FlagServiceError(AppException):
    """Base class for the four outcome kinds of a flag operation."""

    @property
    def kind(self) -> str:
        return self.error_code


class FlagNotFoundError(FlagServiceError):
    """Raised when a flag or one of its environments is missing or soft-deleted."""

    def __init__(
        self,
        message: str = "Flag not found",
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="not_found",
            extra=extra
        )


class FlagConflictError(FlagServiceError):
    """Raised when an active flag already uses the requested key."""

    def __init__(
        self,
        message: str = "Flag with this key already exists",
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="conflict",
            extra=extra
        )


class BadRequestError(FlagServiceError):
    """Raised when input is malformed or violates a data constraint."""

    def __init__(
        self,
        message: str = "Invalid request",
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="bad_request",
            extra=extra
        )


class InternalError(FlagServiceError):
    """Raised when the store fails unexpectedly."""

    def __init__(
        self,
        message: str = "Internal error",
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="internal",
            extra=extra
        )


def _integrity_code(exc: IntegrityError) -> Optional[str]:
    """Extract a SQLSTATE-like code from a driver error, falling back to SQLite messages."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return str(code)

    message = str(orig).lower()
    if "unique constraint" in message:
        return UNIQUE_VIOLATION
    if "foreign key constraint" in message:
        return FOREIGN_KEY_VIOLATION
    if "not null constraint" in message:
        return NOT_NULL_VIOLATION
    if "check constraint" in message:
        return CHECK_VIOLATION
    return None


def translate_store_error(exc: BaseException, fallback_message: str) -> FlagServiceError:
    """
    Classify a store failure into one of the service error kinds.

    Args:
        exc: Exception raised by the store or the transaction machinery
        fallback_message: Message used when the failure is not recognised

    Returns:
        The matching FlagServiceError instance
    """
    if isinstance(exc, FlagServiceError):
        return exc

    if isinstance(exc, IntegrityError):
        code = _integrity_code(exc)
        if code == UNIQUE_VIOLATION:
            return FlagConflictError()
        if code == FOREIGN_KEY_VIOLATION:
            return BadRequestError("Invalid reference: related record not found")
        if code == NOT_NULL_VIOLATION:
            return BadRequestError("Required field is missing")
        if code == CHECK_VIOLATION:
            return BadRequestError("Data validation failed")
        return BadRequestError("Database operation failed")

    if isinstance(exc, TimeoutError):
        return InternalError(f"{fallback_message}: transaction timed out")

    return InternalError(fallback_message)


async def handle_flag_service_error(
    request: Request,
    exc: FlagServiceError
) -> JSONResponse:
    """Map a flag service error to its HTTP response."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Flag service error: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        }
    )

    ERROR_COUNTER.labels(
        error_code=exc.error_code,
        status_code=exc.status_code
    ).inc()

    body = ErrorResponse(
        error=ErrorBody(
            code=exc.error_code,
            message=exc.message,
            details=exc.extra.get("details")
        )
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the flag service exception handlers with a FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(FlagServiceError, handle_flag_service_error)

    logger.info("Exception handlers registered successfully")


__all__ = [
    "AppException",
    "FlagServiceError",
    "FlagNotFoundError",
    "FlagConflictError",
    "BadRequestError",
    "InternalError",
    "translate_store_error",
    "handle_flag_service_error",
    "register_exception_handlers",
]
