"""
Access contexts and the row-level access gate for CRM contacts.

An access context is the resolved identity of the caller for one request.
It is a tagged variant: only ``TaxPreparerAccess`` carries a preparer id,
so a tax preparer context without one cannot be constructed.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import AccessDeniedError, ConfigurationError


logger = logging.getLogger(__name__)


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    TAX_PREPARER = "tax_preparer"
    AFFILIATE = "affiliate"
    CLIENT = "client"
    LEAD = "lead"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


@dataclass(frozen=True)
class StaffAccess:
    """Any caller that is not a tax preparer."""

    user_id: str
    role: UserRole

    def __post_init__(self):
        if self.role == UserRole.TAX_PREPARER:
            raise ConfigurationError("Tax preparer contexts must be built as TaxPreparerAccess")


@dataclass(frozen=True)
class TaxPreparerAccess:
    user_id: str
    preparer_id: str

    @property
    def role(self) -> UserRole:
        return UserRole.TAX_PREPARER


AccessContext = Union[StaffAccess, TaxPreparerAccess]


def build_access_context(
    user_id: str,
    role: Union[UserRole, str],
    preparer_id: Optional[str] = None,
) -> AccessContext:
    """
    Build the access context for a resolved identity.

    Raises:
        ConfigurationError: unknown role, or a tax preparer without a preparer id
    """
    try:
        role = UserRole(role)
    except ValueError:
        raise ConfigurationError(f"Unknown user role: {role!r}")

    if role == UserRole.TAX_PREPARER:
        if not preparer_id:
            logger.critical(f"Tax preparer {user_id} has no preparer id")
            raise ConfigurationError("Preparer ID not found for tax preparer user")
        return TaxPreparerAccess(user_id=user_id, preparer_id=preparer_id)

    return StaffAccess(user_id=user_id, role=role)


def is_admin(access: AccessContext) -> bool:
    return access.role in ADMIN_ROLES


def require_admin(access: AccessContext, action: str) -> None:
    """Raise AccessDeniedError unless the caller is ADMIN or SUPER_ADMIN."""
    if not is_admin(access):
        logger.warning(f"User {access.user_id} ({access.role.value}) denied admin action: {action}")
        raise AccessDeniedError(f"Only admins can {action}")


def _preparer_id(access: TaxPreparerAccess) -> str:
    if not access.preparer_id:
        logger.critical(f"Tax preparer {access.user_id} has an empty preparer id")
        raise ConfigurationError("Preparer ID not found for tax preparer user")
    return access.preparer_id


def check_contact_access(contact, access: AccessContext) -> None:
    """
    Row-level gate for a single contact.

    Tax preparers may only touch contacts assigned to them. Every other role
    passes here; endpoint-level authorisation happens in the API layer.
    Pure and deterministic: raises or returns None, never mutates.
    """
    if isinstance(access, TaxPreparerAccess):
        if contact.assigned_preparer_id != _preparer_id(access):
            raise AccessDeniedError("Contact not assigned to you")


def scope_preparer_filter(access: AccessContext, requested: Optional[str]) -> Optional[str]:
    """
    Resolve the assigned-preparer filter for list queries.

    Tax preparers are always scoped to their own preparer id, whatever they
    asked for.
    """
    if isinstance(access, TaxPreparerAccess):
        return _preparer_id(access)
    return requested
