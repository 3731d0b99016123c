"""Shared pytest fixtures for the authorization service tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import get_db, init_db
from app.features.bootstrap.datasets import SeedDatasets
from app.features.bootstrap.seeder import BootstrapSeeder, SeedReport, reset_bootstrap_state
from app.features.permissions.registry import PermissionRegistry, get_registry
from app.features.permissions.repository import PermissionRepository, RoleRepository
from app.features.permissions.service import AuthorizationService
from app.features.users.auth import create_access_token
from app.features.users.repository import UserRepository


DATA_DIR = Path(__file__).resolve().parent.parent / "app" / "_data"


@pytest_asyncio.fixture()
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Provide a file-backed SQLite engine with every table created."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authz.db'}", poolclass=NullPool)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="session")
def registry() -> PermissionRegistry:
    return PermissionRegistry.from_files(DATA_DIR / "permissions.json", DATA_DIR / "permission_defaults.json")


@pytest.fixture(scope="session")
def datasets() -> SeedDatasets:
    return SeedDatasets.from_directory(DATA_DIR)


@pytest.fixture(autouse=True)
def _reset_bootstrap() -> Iterator[None]:
    """Each test starts as a fresh process as far as seeding is concerned."""

    reset_bootstrap_state()
    yield
    reset_bootstrap_state()


@pytest_asyncio.fixture()
async def seeded(
    session_factory: async_sessionmaker[AsyncSession],
    registry: PermissionRegistry,
    datasets: SeedDatasets,
) -> SeedReport:
    """Run the three bootstrap stages against the bundled datasets."""

    report = await BootstrapSeeder(session_factory, registry, datasets).run_stages()
    assert not report.failed, report
    return report


@pytest.fixture()
def service(session: AsyncSession, registry: PermissionRegistry) -> AuthorizationService:
    return AuthorizationService(
        roles=RoleRepository(session),
        registry=registry,
        users=UserRepository(session),
        permissions=PermissionRepository(session),
    )


@pytest_asyncio.fixture()
async def app(
    session_factory: async_sessionmaker[AsyncSession],
    registry: PermissionRegistry,
) -> AsyncIterator[FastAPI]:
    """Application wired to the per-test database."""

    from app.main import app as application

    async def _get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_registry] = lambda: registry
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI, seeded: SeedReport) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the seeded application."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture()
def auth_headers(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[dict[str, str]]]:
    """Return a helper that builds a bearer header for a seeded user's email."""

    async def _headers(email: str) -> dict[str, str]:
        async with session_factory() as db:
            user = await UserRepository(db).find_by_email(email)
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
