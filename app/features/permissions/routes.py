"""
Permission management API routes.

Provides endpoints for reading the permission catalog and roles, granting and
revoking role permissions, and checking or assigning user permissions.
"""
from typing import Annotated, Any, List
from fastapi import APIRouter, Depends, HTTPException, status

from app.core.database.engine import bounded
from app.core.errors import Result
from app.features.permissions.dependencies import (
    get_authorization_service,
    require_permission,
)
from app.features.permissions.registry import PermissionRegistry, get_registry
from app.features.permissions.schemas import (
    CatalogEntry,
    CatalogResponse,
    ErrorResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RolePermissionsUpdate,
    RoleResponse,
    UserPermissionsResponse,
    UserPermissionsUpdate,
)
from app.features.permissions.service import AuthorizationService
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})

Service = Annotated[AuthorizationService, Depends(get_authorization_service)]


def unwrap(result: Result) -> Any:
    """Return the payload of a successful result; failed results become error responses."""
    return result.raise_for_error().data


def _user_permissions(user: User) -> UserPermissionsResponse:
    return UserPermissionsResponse(
        user_id=user.id,
        role=user.role.slug if user.role else None,
        permissions=list(user.permissions or []),
    )


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog(
    registry: Annotated[PermissionRegistry, Depends(get_registry)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """List every valid permission and the default set per user type."""
    return CatalogResponse(
        permissions=[CatalogEntry(**entry) for entry in registry.catalog],
        defaults={user_type: list(registry.resolve_defaults(user_type)) for user_type in registry.user_types},
        fallback=list(registry.fallback),
    )


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    service: Service,
    current_user: Annotated[User, Depends(require_permission("role:read"))],
):
    """List all roles with their permissions."""
    return unwrap(await bounded(service.list_roles()))


@router.get("/roles/{role_slug}", response_model=RoleResponse)
async def get_role(
    role_slug: str,
    service: Service,
    current_user: Annotated[User, Depends(require_permission("role:read"))],
):
    """Get a role by slug."""
    return unwrap(await bounded(service.get_role(role_slug)))


@router.get("/roles/{role_slug}/permissions", response_model=List[str])
async def get_role_permissions(
    role_slug: str,
    service: Service,
    current_user: Annotated[User, Depends(require_permission("role:read"))],
):
    """Get the permission actions of a role."""
    permissions = await bounded(service.get_role_permissions(role_slug))
    if permissions is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return permissions


@router.put("/roles/{role_slug}/permissions", response_model=RoleResponse)
async def update_role_permissions(
    role_slug: str,
    payload: RolePermissionsUpdate,
    service: Service,
    current_user: Annotated[User, Depends(require_permission("role:update"))],
):
    """
    Grant or revoke role permissions.

    Pass ``expected_version`` from a previous read to reject the change if the
    role was modified in between (409).
    """
    if payload.mode == "grant":
        call = service.grant_role_permissions(role_slug, payload.permissions, payload.expected_version)
    else:
        call = service.revoke_role_permissions(role_slug, payload.permissions, payload.expected_version)

    role = unwrap(await bounded(call))
    log.info(f"User {current_user.id} {payload.mode}ed {payload.permissions} on role '{role_slug}'")
    return role


# ============================================================================
# Permission Checks
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    payload: PermissionCheckRequest,
    service: Service,
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Check whether the caller (or another user, with permission:read) holds an action."""
    subject = current_user
    if payload.user_id and payload.user_id != current_user.id:
        if not (current_user.is_superadmin or service.has_permission(current_user, "permission:read")):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access Denied: Insufficient permissions."
            )
        subject = await bounded(service.users.find_by_id(payload.user_id))

    granted = service.has_permission(subject, payload.action)
    return PermissionCheckResponse(
        has_permission=granted,
        reason=None if granted else f"Missing permission {payload.action}",
    )


# ============================================================================
# User Permission Assignment
# ============================================================================

@router.post("/users/{user_id}/initialize", response_model=UserPermissionsResponse)
async def initialize_user_permissions(
    user_id: str,
    service: Service,
    current_user: Annotated[User, Depends(require_permission("permission:update"))],
):
    """Reset a user's effective permissions to the defaults for their user type."""
    user = await bounded(service.users.find_by_id(user_id))
    unwrap(await bounded(service.initialize_user_permissions(user)))
    return _user_permissions(user)


@router.put("/users/{user_id}", response_model=UserPermissionsResponse)
async def update_user_permissions(
    user_id: str,
    payload: UserPermissionsUpdate,
    service: Service,
    current_user: Annotated[User, Depends(require_permission("permission:update"))],
):
    """Replace a user's effective permissions; every action must belong to the user's role."""
    user = await bounded(service.users.find_by_id(user_id))
    unwrap(await bounded(service.update_user_permissions(user, payload.permissions)))
    return _user_permissions(user)
