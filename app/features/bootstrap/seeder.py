"""
Bootstrap seeder.

Populates baseline data in three strictly ordered stages:

1. roles        - insert the role dataset when the role table is empty
2. permissions  - insert the permission dataset when the permission table is
                  empty, then link every role to the permissions of its
                  nominal catalog (actions that do not resolve are skipped)
3. users        - insert the user dataset when the user table is empty; a user
                  naming a missing role aborts the stage and rolls it back

A failed stage stops the sequence: later stages are reported as skipped and
left for the next start, so users are never seeded ahead of their roles'
permission links.

Every stage is a no-op once its table holds data, so restarts never re-seed.
Within a process the sequence runs once; across processes a lock row keeps two
instances from seeding at the same time.
"""
from __future__ import annotations

import asyncio
import os
import socket
from dataclasses import dataclass, field
from typing import Any, Optional
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import AuthzError, DataIntegrityError, RoleNotFound
from app.features.bootstrap.datasets import SeedDatasets
from app.features.bootstrap.models import BootstrapLock
from app.features.permissions.registry import PermissionRegistry
from app.features.permissions.repository import PermissionRepository, RoleRepository
from app.features.users.models import UserType
from app.features.users.repository import UserRepository
from app.utils import get_logger


log = get_logger(__name__)

LOCK_NAME = "bootstrap-seed"

# Process-wide guard: the seeding sequence runs at most once per process
_run_lock = asyncio.Lock()
_completed = False


def reset_bootstrap_state() -> None:
    """Forget that seeding already ran in this process (tests only)."""
    global _completed
    _completed = False


@dataclass
class StageResult:
    name: str
    status: str  # "seeded", "skipped" or "failed"
    count: int = 0
    message: str = ""
    errors: list[str] = field(default_factory=list)


@dataclass
class SeedReport:
    ran: bool = False
    stages: list[StageResult] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(stage.status == "failed" for stage in self.stages)

    def stage(self, name: str) -> Optional[StageResult]:
        return next((s for s in self.stages if s.name == name), None)


class BootstrapSeeder:
    """
    Dependency-ordered, idempotent seeding of roles, permissions and users.

    Usage:
        seeder = BootstrapSeeder(AsyncSessionLocal, get_registry(), SeedDatasets.from_directory())
        report = await seeder.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: PermissionRegistry,
        datasets: SeedDatasets,
        owner: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.datasets = datasets
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"

    # ========================================================================
    # Entry points
    # ========================================================================

    async def run(self) -> SeedReport:
        """Run the three stages once per process, holding the cross-process lock."""
        global _completed
        async with _run_lock:
            if _completed:
                log.info("Bootstrap seeding already ran in this process, skipping")
                return SeedReport(ran=False)

            if not await self.acquire_lock():
                return SeedReport(ran=False)
            try:
                report = await self.run_stages()
            finally:
                await self.release_lock()

            _completed = True
            return report

    async def run_stages(self) -> SeedReport:
        """Run roles -> permissions -> users strictly in order."""
        report = SeedReport(ran=True)
        for name, stage in (
            ("roles", self.seed_roles),
            ("permissions", self.seed_permissions),
            ("users", self.seed_users),
        ):
            if report.failed:
                log.warning(f"Skipping seeding stage '{name}': an earlier stage failed")
                report.stages.append(StageResult(name=name, status="skipped", message="An earlier stage failed"))
                continue
            report.stages.append(await self._run_stage(name, stage))
        log.info("Bootstrap seeding finished: " + ", ".join(f"{s.name}={s.status}({s.count})" for s in report.stages))
        return report

    async def _run_stage(self, name: str, stage) -> StageResult:
        async with self.session_factory() as session:
            try:
                result = await stage(session)
                await session.commit()
                return result
            except AuthzError as e:
                await session.rollback()
                log.error(f"Seeding stage '{name}' aborted: {e.message}")
                return StageResult(name=name, status="failed", message=e.message, errors=e.errors)
            except Exception as e:
                await session.rollback()
                log.error(f"Seeding stage '{name}' failed: {e}", exc_info=True)
                return StageResult(name=name, status="failed", message=str(e))

    # ========================================================================
    # Stages
    # ========================================================================

    async def seed_roles(self, session: AsyncSession) -> StageResult:
        roles = RoleRepository(session)
        if await roles.count() > 0:
            log.info("Roles already exist, skipping seed")
            return StageResult(name="roles", status="skipped")

        seeded = await roles.bulk_insert(self.datasets.roles)
        log.info(f"{len(seeded)} roles seeded successfully")
        return StageResult(name="roles", status="seeded", count=len(seeded))

    async def seed_permissions(self, session: AsyncSession) -> StageResult:
        permissions = PermissionRepository(session)
        if await permissions.count() > 0:
            log.info("Permissions already exist, skipping seed")
            return StageResult(name="permissions", status="skipped")

        seeded = await permissions.bulk_insert(self.datasets.permissions)
        log.info(f"{len(seeded)} permissions seeded successfully")

        action_ids = {permission.action: permission.id for permission in seeded}
        by_id = {permission.id: permission for permission in seeded}

        roles = RoleRepository(session)
        for role in await roles.list():
            nominal = self.registry.resolve_defaults(role.name)
            resolved = [action_ids[action] for action in nominal if action in action_ids]
            unresolved = [action for action in nominal if action not in action_ids]
            if unresolved:
                log.warning(f"Role '{role.name}': skipping unknown permissions {', '.join(unresolved)}")

            await roles.set_permissions(role, [by_id[permission_id] for permission_id in resolved])
            log.info(f"Linked {len(resolved)} permissions to role '{role.name}'")

        return StageResult(name="permissions", status="seeded", count=len(seeded))

    async def seed_users(self, session: AsyncSession) -> StageResult:
        """
        Create seed users and attach them to their roles.

        Raises:
            DataIntegrityError: a record names a role that does not exist; the
                caller rolls the whole stage back
        """
        users = UserRepository(session)
        if await users.count() > 0:
            log.info("Users already exist, skipping seed")
            return StageResult(name="users", status="skipped")

        roles = RoleRepository(session)
        seeded = 0
        for record in self.datasets.users:
            data: dict[str, Any] = dict(record)
            role_name = data.pop("role", None) or UserType.USER.value

            try:
                role = await roles.find_by_name(role_name)
            except RoleNotFound:
                raise DataIntegrityError(f'Role "{role_name}" does not exist.', [role_name])

            try:
                user_type = UserType(data.get("user_type") or role_name)
            except ValueError:
                raise DataIntegrityError(f'Unknown user type "{data.get("user_type") or role_name}".', [role_name])
            data["user_type"] = user_type
            allowed = set(role.permission_actions)
            data["permissions"] = [a for a in self.registry.resolve_defaults(user_type) if a in allowed]

            user = await users.create(data)
            await roles.append_member(role, user)
            seeded += 1

        if seeded:
            log.info(f"{seeded} user(s) seeded successfully.")
        return StageResult(name="users", status="seeded", count=seeded)

    # ========================================================================
    # Cross-process lock
    # ========================================================================

    async def acquire_lock(self) -> bool:
        async with self.session_factory() as session:
            session.add(BootstrapLock(name=LOCK_NAME, owner=self.owner))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                log.warning("Another instance is seeding baseline data, skipping bootstrap")
                return False
        return True

    async def release_lock(self) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(BootstrapLock).where(BootstrapLock.name == LOCK_NAME, BootstrapLock.owner == self.owner)
            )
            await session.commit()
