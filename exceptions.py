"""
exceptions.py
=============
API exception hierarchy and the FastAPI handlers that render it.

Every error body has the same shape:
    {"success": false, "error": <message>, "error_code": ..., "correlation_id": ..., "timestamp": ...}
"""

import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from logging_config import get_logger

logger = get_logger(__name__)


def get_correlation_id() -> str:
    return uuid.uuid4().hex


def format_error_response(
    message: str,
    status_code: int = 500,
    error_code: Optional[str] = None,
    correlation_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    **kwargs,
) -> Dict[str, Any]:
    """Format a standardized error response body."""
    return {
        "success": False,
        "error": message,
        "error_code": error_code or f"ERR_{status_code}",
        "correlation_id": correlation_id or get_correlation_id(),
        "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
        **kwargs,
    }


class APIException(HTTPException):
    """
    HTTPException carrying a machine-readable error code, a correlation id and
    the moment it was raised.
    """

    def __init__(
        self,
        status_code: int,
        message: str = "An unexpected API error occurred",
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        self.message = message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = correlation_id or get_correlation_id()
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(status_code=status_code, detail=message)


class ValidationException(APIException):
    def __init__(self, message: str = "Validation failed"):
        super().__init__(status_code=400, message=message, error_code="VALIDATION_ERROR")


class PaymentVerificationException(APIException):
    """Gateway signature did not match."""

    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(status_code=400, message=message, error_code="PAYMENT_VERIFICATION_FAILED")


class CouponRejectedException(APIException):
    """A coupon failed re-validation at checkout time."""

    def __init__(self, message: str):
        super().__init__(status_code=400, message=message, error_code="COUPON_REJECTED")


class NotFoundException(APIException):
    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(status_code=404, message=message, error_code="NOT_FOUND")


class ConflictException(APIException):
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(status_code=409, message=message, error_code="CONFLICT_ERROR")


class InvalidTransitionException(APIException):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            status_code=409,
            message=f"Cannot change payment status from '{current}' to '{requested}'",
            error_code="INVALID_STATUS_TRANSITION",
        )


class ExternalServiceException(APIException):
    def __init__(self, message: str = "External service error", service: Optional[str] = None):
        self.service = service
        super().__init__(status_code=502, message=message, error_code="EXTERNAL_SERVICE_ERROR")


class ServiceUnavailableException(APIException):
    def __init__(self, message: str = "Service unavailable"):
        super().__init__(status_code=503, message=message, error_code="SERVICE_UNAVAILABLE")


# ─────────────── Handlers ───────────────

def _diagnostics(exc: Exception) -> Dict[str, Any]:
    if not settings.DEBUG:
        return {}
    return {
        "detail": str(exc),
        "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
    }


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            exc.message,
            status_code=exc.status_code,
            error_code=exc.error_code,
            correlation_id=exc.correlation_id,
            timestamp=exc.timestamp,
        ),
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    correlation_id = get_correlation_id()
    logger.exception("Database error [%s] on %s %s", correlation_id, request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=format_error_response(
            "A database error occurred",
            error_code="DATABASE_ERROR",
            correlation_id=correlation_id,
            **_diagnostics(exc),
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = get_correlation_id()
    logger.exception("Unexpected error [%s] on %s %s", correlation_id, request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=format_error_response(
            "An unexpected error occurred",
            error_code="INTERNAL_ERROR",
            correlation_id=correlation_id,
            **_diagnostics(exc),
        ),
    )
