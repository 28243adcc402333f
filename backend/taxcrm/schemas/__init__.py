"""
Pydantic schemas for request/response validation.
"""

from .common import ErrorDetail, ErrorResponse, HealthResponse, PaginationParams, SuccessResponse
from .contact import (
    AssignRequest,
    ContactCreate,
    ContactDetailResponse,
    ContactFilters,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
    StageChangeRequest,
    StageUpdate,
)
from .interaction import (
    InteractionCreate,
    InteractionRequest,
    InteractionResponse,
    StageHistoryResponse,
    TagRequest,
    TagResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "PaginationParams",
    "SuccessResponse",
    "AssignRequest",
    "ContactCreate",
    "ContactDetailResponse",
    "ContactFilters",
    "ContactListResponse",
    "ContactResponse",
    "ContactUpdate",
    "StageChangeRequest",
    "StageUpdate",
    "InteractionCreate",
    "InteractionRequest",
    "InteractionResponse",
    "StageHistoryResponse",
    "TagRequest",
    "TagResponse",
]
