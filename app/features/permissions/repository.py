"""
Role and permission persistence.

Lookups that miss raise a NotFound error instead of returning None, so callers
outside this module never have to null-check. Role writes go through SQLAlchemy's
version counter: a write based on a stale copy of a role raises ConflictError.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Sequence
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ConflictError, PermissionNotFound, RoleNotFound, ValidationError
from app.features.permissions.models import Permission, Role, slugify
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def _flush(session: AsyncSession, what: str) -> None:
    """Flush pending changes, translating store errors into domain errors."""
    try:
        await session.flush()
    except StaleDataError:
        raise ConflictError(f"{what} was modified concurrently, reload and retry")
    except IntegrityError as e:
        raise ValidationError(f"{what} violates a uniqueness constraint", [str(e.orig)])


class RoleRepository:
    """Role store bound to a single session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_id(self, role_id: str) -> Role:
        role = await self.session.get(Role, role_id)
        if role is None:
            raise RoleNotFound(f"Role '{role_id}' not found")
        return role

    async def find_by_name(self, name: str) -> Role:
        result = await self.session.execute(select(Role).where(Role.name == name))
        role = result.scalar_one_or_none()
        if role is None:
            raise RoleNotFound(f"Role '{name}' not found")
        return role

    async def find_by_slug(self, slug: str) -> Role:
        result = await self.session.execute(select(Role).where(Role.slug == slug))
        role = result.scalar_one_or_none()
        if role is None:
            raise RoleNotFound(f"Role '{slug}' not found")
        return role

    async def list(self) -> list[Role]:
        result = await self.session.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Role))
        return result.scalar_one()

    async def find_by_permissions_intersecting(self, actions: Iterable[str]) -> list[Role]:
        """Roles holding at least one of the given actions."""
        actions = list(actions)
        if not actions:
            return []
        stmt = (
            select(Role)
            .join(Role.permissions)
            .where(Permission.action.in_(actions))
            .distinct()
            .order_by(Role.name)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        stmt = select(Role.id).where((Role.name == name.strip()) | (Role.slug == slugify(name)))
        if exclude_id is not None:
            stmt = stmt.where(Role.id != exclude_id)
        if (await self.session.execute(stmt)).first() is not None:
            raise ValidationError(f"Role '{name}' already exists", [name])

    async def create(
        self,
        name: str,
        description: Optional[str] = None,
        permissions: Sequence[Permission] = (),
    ) -> Role:
        await self._ensure_unique_name(name)
        role = Role(name=name, description=description, permissions=list(permissions), users=[])
        self.session.add(role)
        await _flush(self.session, f"Role '{name}'")
        log.info(f"Created role '{role.name}' ({role.slug})")
        return role

    async def bulk_insert(self, records: Iterable[Mapping[str, str]]) -> list[Role]:
        roles = [
            Role(name=record["name"], description=record.get("description"), permissions=[], users=[])
            for record in records
        ]
        self.session.add_all(roles)
        await _flush(self.session, "Role batch")
        return roles

    async def update(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Role:
        """Update a role; a new name re-derives the slug in the same flush."""
        role = await self.find_by_id(role_id)
        self._check_version(role, expected_version)
        if name is not None and name.strip() != role.name:
            await self._ensure_unique_name(name, exclude_id=role.id)
            role.name = name
        if description is not None:
            role.description = description
        await _flush(self.session, f"Role '{role.name}'")
        return role

    async def delete(self, role_id: str) -> Role:
        role = await self.find_by_id(role_id)
        await self.session.delete(role)
        await _flush(self.session, f"Role '{role.name}'")
        log.info(f"Deleted role '{role.name}'")
        return role

    async def set_permissions(
        self,
        role: Role,
        permissions: Sequence[Permission],
        expected_version: Optional[int] = None,
    ) -> Role:
        """Replace the role's permission set with a version-checked write."""
        self._check_version(role, expected_version)
        role.permissions = list(permissions)
        self._touch(role)
        await _flush(self.session, f"Role '{role.name}'")
        return role

    async def append_member(self, role: Role, user: User) -> bool:
        """
        Attach a user to a role. Returns False when the user is already a member.

        The role row is updated too, so its version check guards the membership list.
        """
        if user in role.users:
            return False
        role.users.append(user)
        self._touch(role)
        await _flush(self.session, f"Role '{role.name}'")
        return True

    @staticmethod
    def _check_version(role: Role, expected_version: Optional[int]) -> None:
        if expected_version is not None and role.version_id != expected_version:
            raise ConflictError(
                f"Role '{role.name}' is at version {role.version_id}, expected {expected_version}",
                [role.slug],
            )

    @staticmethod
    def _touch(role: Role) -> None:
        role.updated_at = datetime.now(timezone.utc)


class PermissionRepository:
    """Permission store bound to a single session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Permission))
        return result.scalar_one()

    async def find_by_action(self, action: str) -> Permission:
        result = await self.session.execute(select(Permission).where(Permission.action == action))
        permission = result.scalar_one_or_none()
        if permission is None:
            raise PermissionNotFound(f"Permission '{action}' not found", [action])
        return permission

    async def find_by_actions(self, actions: Iterable[str]) -> list[Permission]:
        actions = list(actions)
        if not actions:
            return []
        result = await self.session.execute(select(Permission).where(Permission.action.in_(actions)))
        return list(result.scalars().all())

    async def bulk_insert(self, records: Iterable[Mapping[str, str]]) -> list[Permission]:
        permissions = [
            Permission(action=record["action"], description=record.get("description"))
            for record in records
        ]
        self.session.add_all(permissions)
        await _flush(self.session, "Permission batch")
        return permissions
