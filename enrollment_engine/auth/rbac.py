from typing import Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status

from enrollment_engine.auth.dependencies import get_current_user
from enrollment_engine.auth.schemas import CurrentUser

ADMIN_ROLES = ("SUPER_ADMIN", "PLATFORM_ADMIN")


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("rollover", "execute"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if current_user.role in ADMIN_ROLES:
            return
        permissions: Dict[str, Dict[str, bool]] = current_user.permissions or {}
        module_perms = permissions.get(module, {})
        if not module_perms.get(action, False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker


def ensure_school_access(current_user: CurrentUser, school_id: UUID) -> None:
    """Block requests for another school's data. Platform admins may act on any school."""
    if current_user.role == "PLATFORM_ADMIN":
        return
    if current_user.school_id != school_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access this school",
        )


def resolve_school_id(current_user: CurrentUser, school_id: Optional[UUID]) -> UUID:
    """School a request acts on: the explicit one when given (access-checked), else the caller's."""
    if school_id is None:
        return current_user.school_id
    ensure_school_access(current_user, school_id)
    return school_id
