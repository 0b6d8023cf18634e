"""
Custom exception classes for structured error handling.
"""

from fastapi import HTTPException, status
import logging
from functools import wraps

from axis_sync.core.errors import (
    SyncError, AuthRequired, AuthExpired, PermissionDenied, NotFound,
    RateLimited, RemoteError, InvalidState, ConfigError
)

logger = logging.getLogger(__name__)


class AxisException(HTTPException):
    """Base exception for all Axis-specific errors."""

    def __init__(self, status_code: int, detail: str, error_code: str = None):
        super().__init__(status_code=status_code, detail=detail)
        self.error_code = error_code or self.__class__.__name__


class ValidationError(AxisException):
    """Raised when request validation fails."""

    def __init__(self, detail: str, field: str = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Validation error: {detail}" + (f" (field: {field})" if field else ""),
            error_code="VALIDATION_ERROR"
        )


# Sync error type -> (HTTP status, error code)
SYNC_ERROR_STATUS = {
    AuthRequired: (status.HTTP_401_UNAUTHORIZED, "AUTH_REQUIRED"),
    AuthExpired: (status.HTTP_401_UNAUTHORIZED, "AUTH_EXPIRED"),
    PermissionDenied: (status.HTTP_403_FORBIDDEN, "PERMISSION_DENIED"),
    NotFound: (status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    InvalidState: (status.HTTP_400_BAD_REQUEST, "INVALID_STATE"),
    RateLimited: (status.HTTP_429_TOO_MANY_REQUESTS, "RATE_LIMITED"),
    RemoteError: (status.HTTP_502_BAD_GATEWAY, "REMOTE_ERROR"),
    ConfigError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "CONFIG_ERROR"),
}


def to_http_exception(error: SyncError) -> AxisException:
    """Translate a sync error into its HTTP response"""
    for error_type, (status_code, error_code) in SYNC_ERROR_STATUS.items():
        if isinstance(error, error_type):
            return AxisException(status_code=status_code, detail=error.message, error_code=error_code)
    return AxisException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.message,
        error_code="SYNC_ERROR"
    )


def handle_api_errors(func):
    """
    Decorator to handle exceptions and convert them to appropriate HTTP responses.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            # Re-raise FastAPI and Axis exceptions as-is
            raise
        except SyncError as e:
            logger.warning(f"{func.__name__} failed: {e.__class__.__name__}: {e.message}")
            raise to_http_exception(e)
        except ValueError as e:
            raise ValidationError(detail=str(e))
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {str(e)}", exc_info=True)
            raise AxisException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected error occurred. Please try again later.",
                error_code="INTERNAL_ERROR"
            )

    return wrapper
