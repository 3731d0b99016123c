"""
API credential routes.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import bounded, get_db
from app.features.credentials.schemas import (
    CredentialCreate,
    CredentialIssued,
    CredentialKey,
    CredentialResponse,
    CredentialVerification,
)
from app.features.credentials.service import CredentialAuthority
from app.features.permissions.dependencies import require_permission
from app.features.permissions.routes import unwrap
from app.features.permissions.service import AuthorizationService
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["credentials"])


def get_credential_authority(db: Annotated[AsyncSession, Depends(get_db)]) -> CredentialAuthority:
    return CredentialAuthority(db)


Authority = Annotated[CredentialAuthority, Depends(get_credential_authority)]


@router.post("", response_model=CredentialIssued, status_code=status.HTTP_201_CREATED)
async def issue_credential(
    payload: CredentialCreate,
    authority: Authority,
    current_user: Annotated[User, Depends(require_permission("apikey:create"))],
):
    """Issue an API key scoped to a subset of the caller's permissions."""
    return unwrap(await bounded(authority.issue(
        current_user,
        payload.permissions,
        environment=payload.environment,
        key_type=payload.type,
        description=payload.description,
    )))


@router.get("", response_model=List[CredentialResponse])
async def list_credentials(
    authority: Authority,
    current_user: Annotated[User, Depends(get_current_user)],
):
    """List the caller's API keys."""
    return unwrap(await bounded(authority.list_for_user(current_user)))


@router.post("/verify", response_model=CredentialVerification)
async def verify_credential(payload: CredentialKey, authority: Authority):
    """Verify an API key and return the permissions it grants."""
    return unwrap(await bounded(authority.verify(payload.api_key)))


@router.post("/refresh", response_model=CredentialIssued)
async def refresh_credential(payload: CredentialKey, authority: Authority):
    """Rotate an API key that is close to (or past) its expiry."""
    return unwrap(await bounded(authority.refresh(payload.api_key)))


@router.post("/{credential_id}/revoke", response_model=CredentialResponse)
async def revoke_credential(
    credential_id: str,
    authority: Authority,
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Revoke an API key. Owners may revoke their own keys; others need apikey:disable."""
    credential = unwrap(await bounded(authority.get(credential_id)))
    is_owner = credential.user_id == current_user.id
    if not (is_owner or current_user.is_superadmin
            or AuthorizationService.has_permission(current_user, "apikey:disable")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access Denied: Insufficient permissions."
        )
    return unwrap(await bounded(authority.revoke(credential_id, current_user)))
