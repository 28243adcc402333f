"""
Authentication dependencies for FastAPI routes.

Provides:
- get_access_context: verifies the identity-provider bearer token and returns
  the caller's AccessContext
- require_role(*roles): factory that returns a dependency enforcing role membership
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .access import AccessContext, UserRole, build_access_context
from .security import decode_token


logger = logging.getLogger(__name__)

# Tokens come from the identity provider; tokenUrl is informational only.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


async def get_access_context(
    token: Optional[str] = Depends(oauth2_scheme),
) -> AccessContext:
    """
    Decode the bearer token and build the caller's access context.

    Raises 401 if the token is missing or invalid. A token for a tax preparer
    without a preparer id raises ConfigurationError (mapped to 500).
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(token)
    if payload is None or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return build_access_context(user_id, role, payload.get("preparer_id"))


# Role hierarchy: super_admin implicitly satisfies "admin" checks.
_ROLE_IMPLIES: dict[str, set[str]] = {
    UserRole.SUPER_ADMIN.value: {UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value},
}


def require_role(*allowed_roles: str):
    """
    Factory: returns a FastAPI dependency that checks the caller's role.

    Usage:
        @router.post("/campaigns", dependencies=[Depends(require_role("admin"))])
    """
    async def _check(access: AccessContext = Depends(get_access_context)) -> AccessContext:
        effective_roles = _ROLE_IMPLIES.get(access.role.value, {access.role.value})
        if not effective_roles.intersection(allowed_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return access

    return _check
