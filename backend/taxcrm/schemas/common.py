"""
Common Pydantic schemas shared across the application.

Contains health check, error, pagination and success schemas.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


# =============================================================================
# Health Check Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """
    Health check response schema.

    Used by monitoring systems to verify service health.
    """

    status: str = Field(
        ...,
        description="Overall health status (healthy, unhealthy)"
    )
    version: str = Field(
        ...,
        description="Application version"
    )
    timestamp: datetime = Field(
        ...,
        description="Current server timestamp"
    )
    database: str = Field(
        ...,
        description="Database connection status"
    )
    environment: str = Field(
        ...,
        description="Runtime environment (development, production)"
    )


# =============================================================================
# Error Schemas
# =============================================================================

class ErrorDetail(BaseModel):
    """
    Detail for a single validation error.
    """

    field: Optional[str] = Field(
        default=None,
        description="Field that caused the error"
    )
    message: str = Field(
        ...,
        description="Error message"
    )
    code: Optional[str] = Field(
        default=None,
        description="Error code for programmatic handling"
    )


class ErrorResponse(BaseModel):
    """
    Standard error response schema.

    Used for consistent error formatting across all endpoints.
    """

    success: bool = Field(
        default=False,
        description="Always false for errors"
    )
    error: str = Field(
        ...,
        description="Error type or category"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    details: Optional[List[ErrorDetail]] = Field(
        default=None,
        description="Additional error details (for validation errors)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error": "validation_error",
                "message": "Invalid input data",
                "details": [
                    {
                        "field": "email",
                        "message": "A contact with this email already exists",
                        "code": "duplicate_email"
                    }
                ]
            }
        }
    }


# =============================================================================
# Pagination Schemas
# =============================================================================

class PaginationParams(BaseModel):
    """
    Offset pagination parameters for list operations.
    """

    page: int = Field(
        default=1,
        ge=1,
        description="Page number (1-indexed)"
    )
    limit: int = Field(
        default=50,
        ge=1,
        le=100,
        description="Number of items per page (max 100)"
    )

    @property
    def offset(self) -> int:
        """Calculate offset for database query."""
        return (self.page - 1) * self.limit


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if total > 0 else 0


# =============================================================================
# Success Response Schema
# =============================================================================

class SuccessResponse(BaseModel):
    """
    Generic success response for operations without specific return data.
    """

    success: bool = Field(
        default=True,
        description="Operation success status"
    )
    message: str = Field(
        ...,
        description="Success message"
    )
