"""Error taxonomy and the JSON handlers that render it.

Every failure the API reports carries one code from ``ErrorCode``; clients
branch on that code, never on the human-readable detail.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    RATE_LIMITED = "RATE_LIMITED"
    SCAN_LIMIT_REACHED = "SCAN_LIMIT_REACHED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    NO_BILLING_CUSTOMER = "NO_BILLING_CUSTOMER"
    EVENT_NOT_APPLIED = "EVENT_NOT_APPLIED"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code

    def payload(self) -> dict:
        return {"error": self.code.value, "detail": self.message}


class Unauthenticated(AppError):
    code = ErrorCode.UNAUTHENTICATED
    status_code = 401


class EmailNotVerified(AppError):
    code = ErrorCode.EMAIL_NOT_VERIFIED
    status_code = 403


class RateLimited(AppError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429


class EntitlementExhausted(AppError):
    code = ErrorCode.SCAN_LIMIT_REACHED
    status_code = 403

    def payload(self) -> dict:
        return {**super().payload(), "allowed": False, "scansRemaining": 0}


class ValidationError(AppError, ValueError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class Conflict(AppError):
    code = ErrorCode.CONFLICT
    status_code = 409


class UpstreamFailure(AppError):
    code = ErrorCode.UPSTREAM_FAILURE
    status_code = 500


class SignatureInvalid(AppError):
    code = ErrorCode.SIGNATURE_INVALID
    status_code = 400


class NoBillingCustomer(AppError):
    code = ErrorCode.NO_BILLING_CUSTOMER
    status_code = 400


class EventNotApplied(AppError):
    """A verified billing event that could not be applied; the provider retries on 5xx."""
    code = ErrorCode.EVENT_NOT_APPLIED
    status_code = 500


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "%s %s -> %s %s: %s", request.method, request.url.path,
               exc.status_code, exc.code.value, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": ErrorCode.VALIDATION_ERROR.value, "detail": message},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": ErrorCode.UPSTREAM_FAILURE.value, "detail": "Database unavailable"},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": ErrorCode.INTERNAL_ERROR.value, "detail": "An unexpected error occurred."},
    )


def register_error_handlers(app):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
