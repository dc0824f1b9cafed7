"""
Error handling middleware: turns exceptions into the standard error payload.
"""

import logging
import traceback
from typing import Any, Dict, List
from uuid import uuid4

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import SQLAlchemyError

from ..utils.exceptions import (
    TicketingError,
    ErrorCode,
    ValidationError,
    NotFoundError,
    AuthenticationError,
    AuthorizationError,
    BusinessLogicError,
    PersistenceFailureError,
)
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)

STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_CAPACITY: status.HTTP_409_CONFLICT,
    ErrorCode.SEAT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_RECENT: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_ON_WAITLIST: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_WAITLIST_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PERSISTENCE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(exc: TicketingError) -> int:
    """Map error codes to HTTP status codes."""
    return STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_response(exc: TicketingError, error_id: str) -> JSONResponse:
    """Build the standard error payload for a service error."""
    headers = {}
    if isinstance(exc, AuthenticationError):
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=status_code_for(exc),
        content={
            "error": exc.to_dict(),
            "error_id": error_id,
            "timestamp": utcnow().isoformat()
        },
        headers=headers
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request body and query validation failures as VALIDATION_ERROR."""
    field_errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        field_errors.setdefault(field_path, []).append(error["msg"])

    error = ValidationError("Request validation failed", field_errors=field_errors)
    error_id = str(uuid4())
    logger.warning(
        f"Client error [{error_id}]: {error.message}",
        extra={"error_id": error_id, "error_code": error.error_code.value, "field_errors": field_errors}
    )
    return error_response(error, error_id)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that converts uncaught exceptions into error responses."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any exceptions."""
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid4())
            self._log_error(request, exc, error_id)
            return self._handle_exception(exc, error_id)

    def _handle_exception(self, exc: Exception, error_id: str) -> JSONResponse:
        if isinstance(exc, TicketingError):
            return error_response(exc, error_id)

        if isinstance(exc, SQLAlchemyError):
            error = PersistenceFailureError("A database error occurred")
        else:
            error = TicketingError(
                "An unexpected error occurred",
                error_code=ErrorCode.INTERNAL_ERROR,
                details={"error_type": type(exc).__name__} if self.debug else None
            )

        response = error_response(error, error_id)
        if self.debug:
            # Stack traces only leave the process in debug mode
            body: Dict[str, Any] = {
                "error": error.to_dict(),
                "error_id": error_id,
                "timestamp": utcnow().isoformat(),
                "debug": {"exception": str(exc), "traceback": traceback.format_exc()},
            }
            response = JSONResponse(status_code=response.status_code, content=body)
        return response

    def _log_error(self, request: Request, exc: Exception, error_id: str) -> None:
        """Log error with request context."""
        request_info = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }

        if isinstance(exc, TicketingError):
            extra = {
                "error_id": error_id,
                "error_code": exc.error_code.value,
                "request": request_info,
                "details": exc.details
            }
            if isinstance(exc, (ValidationError, NotFoundError, AuthenticationError, AuthorizationError)):
                logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
            elif isinstance(exc, BusinessLogicError):
                logger.info(f"Business rule rejected request [{error_id}]: {exc.message}", extra=extra)
            else:
                logger.error(f"System error [{error_id}]: {exc.message}", extra=extra)
        else:
            logger.error(
                f"Unexpected error [{error_id}]: {exc}",
                extra={
                    "error_id": error_id,
                    "error_type": type(exc).__name__,
                    "request": request_info,
                },
                exc_info=True
            )
