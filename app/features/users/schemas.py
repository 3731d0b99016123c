"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.users.models import UserType


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: EmailStr
    first_name: str
    last_name: str
    user_type: UserType
    role_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    is_active: bool
    is_superadmin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
