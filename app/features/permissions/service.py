"""
Authorization service.

Computes effective permissions, validates permission assignments and answers
membership checks. Every public coroutine returns a Result (or, for the read
helpers, a plain value) and never lets an exception escape to the caller.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable, Optional, Sequence

from app.core.errors import InternalError, Result, RoleNotFound, ValidationError, returns_result
from app.features.permissions.models import Permission, Role
from app.features.permissions.registry import PermissionRegistry
from app.features.permissions.repository import PermissionRepository, RoleRepository
from app.features.users.models import User, UserType
from app.features.users.repository import UserRepository
from app.utils import get_logger


log = get_logger(__name__)


def actions_of(subject: Any) -> list[str]:
    """
    Return the action tokens carried by a role, user, credential or plain mapping.

    Accepts ``Role`` (its permission records), objects with a ``permissions``
    attribute and mappings with a ``"permissions"`` key. Entries may be action
    strings or ``Permission`` records.
    """
    if subject is None:
        return []
    if isinstance(subject, Role):
        return subject.permission_actions
    if isinstance(subject, Mapping):
        raw = subject.get("permissions") or []
    else:
        raw = getattr(subject, "permissions", None) or []
    return [p.action if isinstance(p, Permission) else str(p) for p in raw]


def _dedupe(actions: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(actions))


def _user_type_value(user_type: UserType | str | None) -> str:
    if isinstance(user_type, UserType):
        return user_type.value
    return str(user_type or UserType.USER.value).lower()


class AuthorizationService:
    """
    Role/permission authorization engine.

    Usage:
        service = AuthorizationService(
            roles=RoleRepository(db),
            registry=get_registry(),
            users=UserRepository(db),
            permissions=PermissionRepository(db),
        )
        result = await service.initialize_user_permissions(user)
    """

    def __init__(
        self,
        roles: RoleRepository,
        registry: PermissionRegistry,
        users: Optional[UserRepository] = None,
        permissions: Optional[PermissionRepository] = None,
    ):
        self.roles = roles
        self.registry = registry
        self.users = users or UserRepository(roles.session)
        self.permissions = permissions or PermissionRepository(roles.session)

    async def rollback(self) -> None:
        session = self.roles.session
        if session.in_transaction() and (session.new or session.dirty or session.deleted or not session.is_active):
            await session.rollback()

    # ========================================================================
    # Effective permissions
    # ========================================================================

    @returns_result
    async def initialize_user_permissions(self, user: User) -> Result:
        """
        Compute and assign a user's effective permissions.

        The default set for the user's type is intersected with the permissions
        currently stored on the matching role, so a role narrowed by an
        administrator also narrows newly initialised users.

        Returns:
            Result whose data is the effective permission list

        Raises (as a failed Result):
            RoleNotFound: no role exists for the user's type
        """
        type_name = _user_type_value(user.user_type)
        role = await self.roles.find_by_name(type_name)

        candidate = self.registry.resolve_defaults(type_name)
        allowed = set(role.permission_actions)
        effective = [action for action in candidate if action in allowed]

        dropped = [action for action in candidate if action not in allowed]
        if dropped:
            log.debug(f"Role '{role.name}' no longer grants {', '.join(dropped)}; not assigned to user {user.id}")

        user.permissions = effective
        await self.roles.append_member(role, user)
        await self.users.save(user)

        return Result.ok(data=effective, message="Permissions initialized successfully")

    @returns_result
    async def update_user_permissions(self, user: User, requested: Sequence[str]) -> Result:
        """Replace a user's effective permissions after validating them against the user's role."""
        role = user.role
        if role is None:
            raise RoleNotFound(f"User '{user.id}' has no role")

        validation = self.validate_permission_assignment(role, requested)
        if validation.error:
            return validation

        user.permissions = _dedupe(requested)
        await self.users.save(user)
        return Result.ok(data=user.permissions, message="Permissions updated successfully")

    # ========================================================================
    # Validation and checks
    # ========================================================================

    def validate_permission_assignment(self, role: Any, requested: Iterable[str]) -> Result:
        """
        Check that every requested action belongs to the role.

        Pure: nothing is written. On failure the Result's ``errors`` lists the
        offending actions in the order they were requested.
        """
        try:
            requested = list(requested)
            allowed = set(actions_of(role))
            # Repeated offenders are reported as often as they were requested
            invalid = [action for action in requested if action not in allowed]
            role_name = getattr(role, "name", None) or (role.get("name") if isinstance(role, Mapping) else None)

            if invalid:
                return Result.from_error(ValidationError(
                    f"Invalid permissions for role {role_name}: {', '.join(invalid)}",
                    invalid,
                ))
            return Result.ok(data={"valid_permissions": requested}, message="Permissions are valid")
        except Exception as e:
            log.error(f"Unexpected error validating permissions: {e}", exc_info=True)
            return Result.from_error(InternalError("Internal server error"))

    @returns_result
    async def validate_profile_permissions(self, user_type: UserType | str, requested: Sequence[str]) -> Result:
        """Validate permissions against the role named after a user type."""
        type_name = _user_type_value(user_type)
        try:
            role = await self.roles.find_by_name(type_name)
        except RoleNotFound:
            raise ValidationError(f"Invalid profile type: {type_name}", [type_name])
        return self.validate_permission_assignment(role, requested)

    @staticmethod
    def has_permission(subject: Any, action: str) -> bool:
        """Membership test against the subject's current effective permissions. No I/O."""
        return action in actions_of(subject)

    @staticmethod
    def has_all_permissions(subject: Any, actions: Iterable[str]) -> bool:
        held = set(actions_of(subject))
        return all(action in held for action in actions)

    # ========================================================================
    # Role reads
    # ========================================================================

    async def get_role_permissions(self, role_slug: str) -> Optional[list[str]]:
        """Permissions of a role, or None when the role does not exist."""
        try:
            role = await self.roles.find_by_slug(role_slug)
        except RoleNotFound:
            return None
        except Exception as e:
            log.error(f"Unexpected error loading role '{role_slug}': {e}", exc_info=True)
            return None
        return role.permission_actions

    @returns_result
    async def get_role(self, role_slug: str) -> Result:
        return Result.ok(data=await self.roles.find_by_slug(role_slug))

    @returns_result
    async def list_roles(self) -> Result:
        return Result.ok(data=await self.roles.list())

    # ========================================================================
    # Role grants
    # ========================================================================

    @returns_result
    async def grant_role_permissions(
        self,
        role_slug: str,
        actions: Sequence[str],
        expected_version: Optional[int] = None,
    ) -> Result:
        """
        Add permissions to a role.

        Every action must exist in the permission catalog and store; the write is
        version-checked so two concurrent grants cannot drop each other's changes.
        """
        role = await self.roles.find_by_slug(role_slug)
        granted = await self._resolve_catalog_actions(actions)
        merged = {p.id: p for p in role.permissions}
        merged.update({p.id: p for p in granted})
        await self.roles.set_permissions(role, list(merged.values()), expected_version=expected_version)
        log.info(f"Granted {', '.join(p.action for p in granted)} to role '{role.name}'")
        return Result.ok(data=role, message="Permissions granted successfully")

    @returns_result
    async def revoke_role_permissions(
        self,
        role_slug: str,
        actions: Sequence[str],
        expected_version: Optional[int] = None,
    ) -> Result:
        """
        Remove permissions from a role.

        Members lose the revoked actions in the same transaction, so every
        user's effective set stays within the role's set.
        """
        role = await self.roles.find_by_slug(role_slug)
        removed = set(actions)
        remaining = [p for p in role.permissions if p.action not in removed]
        await self.roles.set_permissions(role, remaining, expected_version=expected_version)

        for member in role.users:
            kept = [action for action in member.permissions or [] if action not in removed]
            if len(kept) != len(member.permissions or []):
                member.permissions = kept
                await self.users.save(member)

        log.info(f"Revoked {', '.join(sorted(removed))} from role '{role.name}' and its {len(role.users)} member(s)")
        return Result.ok(data=role, message="Permissions revoked successfully")

    async def _resolve_catalog_actions(self, actions: Sequence[str]) -> list[Permission]:
        actions = _dedupe(actions)
        unknown = [action for action in actions if not self.registry.is_valid_action(action)]
        if unknown:
            raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", unknown)

        found = {p.action: p for p in await self.permissions.find_by_actions(actions)}
        missing = [action for action in actions if action not in found]
        if missing:
            raise ValidationError(f"Permissions not seeded: {', '.join(missing)}", missing)
        return [found[action] for action in actions]
