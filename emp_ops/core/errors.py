"""
Error types for the EMP operations backend.

Two layers live here:
- Domain exceptions raised by services (no HTTP knowledge).
- Standardized API error responses, so clients can rely on a stable
  ``{error, code, message, details}`` shape.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# =============================================================================
# Domain exceptions
# =============================================================================


class EmpOpsError(Exception):
    """Base class for domain errors."""


class FieldMappingError(EmpOpsError):
    """A required field (amount, IBAN) could not be resolved from a record."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class GatewayError(EmpOpsError):
    """The payment gateway could not be reached or answered unusably."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(EmpOpsError):
    """A database operation failed (after the reconnect attempt)."""


class UploadNotFoundError(EmpOpsError):
    """The referenced upload does not exist."""

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Upload '{upload_id}' not found")


class UploadEmptyError(EmpOpsError):
    """The upload has no records to work on."""

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Upload '{upload_id}' has no records")


class UploadBusyError(EmpOpsError):
    """Another operation currently holds the upload."""

    def __init__(self, upload_id: str, holder: str | None = None):
        self.upload_id = upload_id
        self.holder = holder
        message = f"Upload '{upload_id}' is busy"
        if holder:
            message = f"{message} ({holder} in progress)"
        super().__init__(message)


class InvalidTransitionError(EmpOpsError):
    """A row status change that the transition table does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid row status transition: {current} -> {target}")


# =============================================================================
# API errors
# =============================================================================


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication errors (1xxx)
    INVALID_CREDENTIALS = "AUTH_1001"

    # Authorization errors (2xxx)
    PERMISSION_DENIED = "AUTHZ_2001"

    # Validation errors (3xxx)
    VALIDATION_ERROR = "VAL_3001"
    INVALID_INPUT = "VAL_3002"
    MISSING_REQUIRED_FIELD = "VAL_3003"

    # Resource errors (4xxx)
    RESOURCE_NOT_FOUND = "RES_4001"
    RESOURCE_LOCKED = "RES_4003"

    # Business logic errors (5xxx)
    INVALID_STATE_TRANSITION = "BIZ_5001"

    # System errors (6xxx)
    INTERNAL_ERROR = "SYS_6001"
    DATABASE_ERROR = "SYS_6002"
    EXTERNAL_SERVICE_ERROR = "SYS_6003"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str | None = None


class APIException(HTTPException):
    """Extended HTTPException with standardized error codes."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: list[ErrorDetail] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)


class UnauthorizedError(APIException):
    """Authentication required error."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code=ErrorCode.INVALID_CREDENTIALS,
            message=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(APIException):
    """Permission denied error."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            code=ErrorCode.PERMISSION_DENIED,
            message=message,
        )


class ValidationAPIError(APIException):
    """Validation error."""

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
        )


def create_error_response(
    code: ErrorCode,
    message: str,
    details: list[ErrorDetail] | None = None,
) -> dict[str, Any]:
    """Create a standardized error response dictionary."""
    response = {
        "error": code.name.lower().replace("_", " ").title(),
        "code": code.value,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if details:
        response["details"] = [d.model_dump(exclude_none=True) for d in details]

    return response


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException and return standardized response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(code=exc.code, message=exc.message, details=exc.details),
        headers=exc.headers,
    )


# Domain exception -> (HTTP status, error code)
DOMAIN_ERROR_STATUS: dict[type[EmpOpsError], tuple[int, ErrorCode]] = {
    UploadNotFoundError: (status.HTTP_404_NOT_FOUND, ErrorCode.RESOURCE_NOT_FOUND),
    UploadBusyError: (status.HTTP_409_CONFLICT, ErrorCode.RESOURCE_LOCKED),
    UploadEmptyError: (status.HTTP_400_BAD_REQUEST, ErrorCode.INVALID_INPUT),
    InvalidTransitionError: (status.HTTP_409_CONFLICT, ErrorCode.INVALID_STATE_TRANSITION),
    FieldMappingError: (status.HTTP_400_BAD_REQUEST, ErrorCode.MISSING_REQUIRED_FIELD),
    GatewayError: (status.HTTP_502_BAD_GATEWAY, ErrorCode.EXTERNAL_SERVICE_ERROR),
    StorageError: (status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.DATABASE_ERROR),
}


async def domain_exception_handler(request: Request, exc: EmpOpsError) -> JSONResponse:
    """Map domain exceptions that escape a service to API responses."""
    status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR
    for exc_type, mapped in DOMAIN_ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            status_code, code = mapped
            break

    if status_code >= 500:
        logger.error(
            "Operation failed: %s",
            exc,
            extra={"event_type": "api.error.domain", "error_type": type(exc).__name__},
        )

    return JSONResponse(
        status_code=status_code,
        content=create_error_response(code=code, message=str(exc)),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
        ),
    )
