"""
Standardized Error Responses - Consistent API error handling.

Provides:
- Standard error response structure
- Error codes for common scenarios
- HTTP status code mapping
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Client errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    NOT_FOUND = "NOT_FOUND"

    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    FORBIDDEN = "FORBIDDEN"

    CONFLICT = "CONFLICT"
    INVALID_STATE = "INVALID_STATE"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# Map error codes to HTTP status codes
ERROR_STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,

    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,

    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,

    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,

    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# User-friendly default messages
DEFAULT_MESSAGES = {
    ErrorCode.VALIDATION_ERROR: "The provided data is invalid. Please check your input.",
    ErrorCode.INVALID_INPUT: "Invalid input provided.",
    ErrorCode.NOT_FOUND: "The requested resource was not found.",
    ErrorCode.UNAUTHORIZED: "Authentication is required to access this resource.",
    ErrorCode.INVALID_SIGNATURE: "Request signature could not be verified.",
    ErrorCode.FORBIDDEN: "You don't have permission to access this resource.",
    ErrorCode.CONFLICT: "A conflict occurred with the current state.",
    ErrorCode.INVALID_STATE: "This action cannot be performed in the current state.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again later.",
    ErrorCode.SERVICE_UNAVAILABLE: "The service is temporarily unavailable.",
}


class ErrorDetail(BaseModel):
    """Detailed error information."""
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class StandardErrorResponse(BaseModel):
    """Standardized error response structure."""
    success: bool = False
    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="User-friendly error message")
    details: Optional[List[ErrorDetail]] = Field(None, description="Additional error details")
    request_id: Optional[str] = Field(None, description="Request ID for tracking")
    timestamp: str = Field(
        default_factory=lambda: datetime.utcnow().isoformat(),
        description="Error timestamp",
    )


def create_error_response(
    error_code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """
    Create a standardized error response.

    Example:
        >>> create_error_response(ErrorCode.NOT_FOUND, message="Lead not found")
    """
    status_code = ERROR_STATUS_MAP.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    user_message = message or DEFAULT_MESSAGES.get(error_code, "An error occurred.")

    error_details = None
    if details:
        error_details = [
            ErrorDetail(field=d.get("field"), message=d.get("message", ""), code=d.get("code"))
            for d in details
        ]

    response_data = StandardErrorResponse(
        error_code=error_code.value,
        message=user_message,
        details=error_details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=response_data.model_dump(exclude_none=True),
    )


def raise_api_error(
    error_code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[List[Dict[str, Any]]] = None,
):
    """Raise an HTTPException with standardized detail format."""
    status_code = ERROR_STATUS_MAP.get(error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    user_message = message or DEFAULT_MESSAGES.get(error_code, "An error occurred.")

    raise HTTPException(
        status_code=status_code,
        detail={
            "success": False,
            "error_code": error_code.value,
            "message": user_message,
            "details": details,
        },
    )


def handle_validation_error(errors: List[Dict[str, Any]], request_id: Optional[str] = None) -> JSONResponse:
    """Turn pydantic validation errors into a 400 response."""
    details = []
    for error in errors:
        field = ".".join(str(loc) for loc in error.get("loc", []))
        details.append({
            "field": field,
            "message": error.get("msg", "Invalid value"),
            "code": error.get("type", "validation_error"),
        })

    return create_error_response(
        ErrorCode.VALIDATION_ERROR,
        message="Please check your input and try again.",
        details=details,
        request_id=request_id,
    )


def server_error(message: str = "An unexpected error occurred.", request_id: Optional[str] = None) -> JSONResponse:
    return create_error_response(ErrorCode.INTERNAL_ERROR, message=message, request_id=request_id)
