"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from ancretoi.schemas.common import (
    BaseResponse,
    DataResponse,
    ErrorResponse,
    PaginatedResponse,
    PaginationMeta,
)

__all__ = [
    "BaseResponse",
    "DataResponse",
    "ErrorResponse",
    "PaginatedResponse",
    "PaginationMeta",
]
