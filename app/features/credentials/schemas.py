"""
Pydantic schemas for API credentials.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.features.credentials.models import CredentialEnvironment, CredentialStatus, CredentialType


class CredentialCreate(BaseModel):
    """Schema for issuing an API key."""
    permissions: List[str] = Field(..., min_length=1, description="Subset of the caller's permissions")
    environment: CredentialEnvironment = CredentialEnvironment.LIVE
    type: CredentialType = CredentialType.SECRET
    description: Optional[str] = Field(None, max_length=500)


class CredentialResponse(BaseModel):
    """Schema for API key metadata (never includes the key itself)."""
    id: str
    prefix: str
    user_id: str
    environment: CredentialEnvironment
    type: CredentialType
    status: CredentialStatus
    permissions: List[str]
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CredentialIssued(BaseModel):
    """Returned once at issuance or refresh; ``api_key`` is not retrievable later."""
    api_key: str
    credential: CredentialResponse


class CredentialKey(BaseModel):
    api_key: str = Field(..., min_length=1)


class CredentialVerification(BaseModel):
    valid: bool
    permissions: List[str]
    credential: CredentialResponse
