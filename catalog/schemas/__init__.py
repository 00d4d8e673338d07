"""
Pydantic schemas for API request/response validation.
"""

from catalog.schemas.base import (
    ActiveUpdate,
    ApiResponse,
    BulkAction,
    BulkResult,
    DeleteResult,
    ErrorDetail,
    ErrorResponse,
    ListResult,
    PageMeta,
    ResponseMetadata,
)

__all__ = [
    "ActiveUpdate",
    "ApiResponse",
    "BulkAction",
    "BulkResult",
    "DeleteResult",
    "ErrorDetail",
    "ErrorResponse",
    "ListResult",
    "PageMeta",
    "ResponseMetadata",
]
