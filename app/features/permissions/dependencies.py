"""
Permission checking dependencies for route protection.

Implements:
- Construction of the authorization service for a request
- FastAPI dependencies requiring one or all of a set of permissions
"""
from typing import Annotated, Iterable
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.registry import PermissionRegistry, get_registry
from app.features.permissions.repository import PermissionRepository, RoleRepository
from app.features.permissions.service import AuthorizationService
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.users.repository import UserRepository
from app.utils import get_logger


log = get_logger(__name__)


def get_authorization_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[PermissionRegistry, Depends(get_registry)],
) -> AuthorizationService:
    """Authorization service wired to the request's session."""
    return AuthorizationService(
        roles=RoleRepository(db),
        registry=registry,
        users=UserRepository(db),
        permissions=PermissionRepository(db),
    )


def require_permissions(actions: Iterable[str]):
    """
    FastAPI dependency requiring ALL of the given permissions.

    Usage:
        @router.put("/roles/{slug}/permissions")
        async def update_role(
            user: User = Depends(require_permissions(["role:update"]))
        ):
            pass

    Returns:
        Dependency function that returns the current user if they hold every permission

    Raises:
        HTTPException: 403 if any permission is missing
    """
    required = list(actions)

    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.is_superadmin:
            return current_user

        if not AuthorizationService.has_all_permissions(current_user, required):
            log.debug(f"User {current_user.id} denied {', '.join(required)}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access Denied: Insufficient permissions."
            )
        return current_user

    return permission_dependency


def require_permission(action: str):
    """FastAPI dependency requiring a single permission."""
    return require_permissions([action])
