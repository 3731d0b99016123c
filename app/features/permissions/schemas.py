"""
Pydantic schemas for permission management.

Request and response models for permissions, roles and permission checks.
"""
import re
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


_ACTION_PATTERN = re.compile(r"^[a-z0-9_-]+:[a-z0-9_-]+$")


def _check_actions(values: List[str]) -> List[str]:
    cleaned = [v.strip() for v in values]
    bad = [v for v in cleaned if not _ACTION_PATTERN.match(v)]
    if bad:
        raise ValueError(f"Permissions must look like 'resource:verb': {', '.join(bad)}")
    return cleaned


# ============================================================================
# Permission Schemas
# ============================================================================

class CatalogEntry(BaseModel):
    action: str
    description: str = ""


class CatalogResponse(BaseModel):
    """Registry view: every valid action plus the default set per user type."""
    permissions: List[CatalogEntry]
    defaults: dict[str, List[str]]
    fallback: List[str]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleMember(BaseModel):
    id: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    version: int = Field(validation_alias="version_id")
    permissions: List[str] = Field(default_factory=list, validation_alias="permission_actions")
    users: List[RoleMember] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RolePermissionsUpdate(BaseModel):
    """Schema for granting or revoking permissions on a role."""
    permissions: List[str] = Field(..., min_length=1, description="Permission actions, e.g. 'sermon:read'")
    mode: Literal["grant", "revoke"] = "grant"
    expected_version: Optional[int] = Field(None, description="Role version the change is based on")

    @field_validator("permissions")
    @classmethod
    def actions_well_formed(cls, v: List[str]) -> List[str]:
        return _check_actions(v)


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if a user has a permission."""
    action: str = Field(..., description="Permission action, e.g. 'sermon:read'")
    user_id: Optional[str] = Field(None, description="User to check (defaults to the caller)")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


# ============================================================================
# User Permission Schemas
# ============================================================================

class UserPermissionsUpdate(BaseModel):
    """Schema for replacing a user's effective permissions."""
    permissions: List[str] = Field(default_factory=list)

    @field_validator("permissions")
    @classmethod
    def actions_well_formed(cls, v: List[str]) -> List[str]:
        return _check_actions(v)


class UserPermissionsResponse(BaseModel):
    user_id: str
    role: Optional[str] = None
    permissions: List[str] = []


class ErrorResponse(BaseModel):
    """Shape of every error body returned by the API."""
    error: bool = True
    message: str
    code: int
    errors: List[str] = []
