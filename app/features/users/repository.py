"""
User persistence helpers used by the authorization engine and the seeder.
"""
from __future__ import annotations

from typing import Any, Mapping
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import UserNotFound, ValidationError
from app.features.users.models import User


class UserRepository:
    """User store bound to a single session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, user_id: str) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User '{user_id}' not found")
        return user

    async def find_by_email(self, email: str) -> User:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFound(f"User '{email}' not found")
        return user

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(User))
        return result.scalar_one()

    async def create(self, data: Mapping[str, Any]) -> User:
        """Create a user from a flat record; keys that are not user attributes are ignored."""
        known = set(User.__mapper__.attrs.keys())
        fields = {key: value for key, value in data.items() if key in known}
        user = User(**{"role": None, "permissions": [], **fields, "email": str(data["email"]).lower()})
        self.session.add(user)
        await self.save(user)
        return user

    async def save(self, user: User) -> User:
        try:
            await self.session.flush()
        except IntegrityError:
            raise ValidationError(f"User '{user.email}' already exists", [user.email])
        return user
