"""
Web Helpers - Reusable utilities for API endpoints.

Contains:
- Pagination helpers
- Standardized error responses
- Request metadata (client IP, UTM parameters)
"""

from .error_responses import (
    ErrorCode,
    StandardErrorResponse,
    create_error_response,
    handle_validation_error,
    raise_api_error,
    server_error,
)
from .pagination import PaginationMeta, paginate, pagination_params
from .request_meta import extract_utm_params, get_client_ip

__all__ = [
    "ErrorCode",
    "StandardErrorResponse",
    "create_error_response",
    "handle_validation_error",
    "raise_api_error",
    "server_error",
    "PaginationMeta",
    "paginate",
    "pagination_params",
    "extract_utm_params",
    "get_client_ip",
]
