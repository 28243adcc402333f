"""
Domain exceptions for the CRM core.

Services raise these; the API layer maps each one to an HTTP status and the
standard error envelope.
"""

from typing import List, Optional, Type, TypeVar, Union

import pydantic


SchemaT = TypeVar("SchemaT", bound=pydantic.BaseModel)


class CRMError(Exception):
    """Base class for all CRM domain errors."""

    error_code = "crm_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CRMError):
    """Malformed or missing input. Never retried."""

    error_code = "validation_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[List[dict]] = None):
        super().__init__(message)
        self.details = details or []

    @classmethod
    def for_field(cls, field: str, message: str, code: Optional[str] = None) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message, "code": code}])


class NotFoundError(CRMError):
    error_code = "not_found"
    status_code = 404


class AccessDeniedError(CRMError):
    """
    Rejected by the access gate or an admin-only check.

    The public message is always "Access denied" so callers cannot discover
    which contacts exist; the reason is kept for logs.
    """

    error_code = "access_denied"
    status_code = 403

    def __init__(self, reason: str = "Access denied"):
        super().__init__("Access denied")
        self.reason = reason


class ConfigurationError(CRMError):
    """The caller's access context is internally inconsistent (server-side defect)."""

    error_code = "configuration_error"
    status_code = 500


class NotificationError(CRMError):
    """A best-effort email send failed. Never propagated past the dispatcher."""

    error_code = "notification_error"
    status_code = 502


def coerce_input(schema: Type[SchemaT], data: Union[SchemaT, dict]) -> SchemaT:
    """
    Validate raw input against a schema.

    Pydantic errors become a ValidationError with one detail per field.
    """
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as e:
        details = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or None,
                "message": err["msg"],
                "code": err["type"],
            }
            for err in e.errors()
        ]
        raise ValidationError("Invalid input data", details=details) from e
