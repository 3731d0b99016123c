from sqlalchemy.ext.asyncio import AsyncSession

from app.features.bootstrap.seeder import SeedReport
from app.features.permissions.registry import PermissionRegistry
from app.features.permissions.service import AuthorizationService, actions_of
from app.features.users.models import UserType
from app.features.users.repository import UserRepository


async def _new_user(session: AsyncSession, email: str, user_type: UserType):
    return await UserRepository(session).create({"first_name": "Test", "email": email, "user_type": user_type})


# ============================================================================
# Effective permissions
# ============================================================================

async def test_initialize_assigns_defaults_for_user_type(
    session: AsyncSession,
    service: AuthorizationService,
    registry: PermissionRegistry,
    seeded: SeedReport,
) -> None:
    user = await _new_user(session, "new.listener@example.com", UserType.LISTENER)

    result = await service.initialize_user_permissions(user)

    assert not result.error
    assert result.data == list(registry.resolve_defaults(UserType.LISTENER))
    assert user.permissions == result.data
    assert user.role is not None and user.role.name == "listener"


async def test_initialize_grants_system_restart_to_superadmin_only(
    session: AsyncSession,
    service: AuthorizationService,
    seeded: SeedReport,
) -> None:
    admin = await _new_user(session, "second.admin@example.com", UserType.SUPERADMIN)
    listener = await _new_user(session, "second.listener@example.com", UserType.LISTENER)

    admin_result = await service.initialize_user_permissions(admin)
    listener_result = await service.initialize_user_permissions(listener)

    assert "system:restart" in admin_result.data
    assert "system:restart" not in listener_result.data


async def test_initialize_is_bounded_by_role(
    session: AsyncSession,
    service: AuthorizationService,
    seeded: SeedReport,
) -> None:
    revoked = await service.revoke_role_permissions("listener", ["playlist:delete"])
    assert not revoked.error
    user = await _new_user(session, "narrow@example.com", UserType.LISTENER)

    result = await service.initialize_user_permissions(user)

    assert "playlist:delete" not in result.data
    assert set(result.data) <= set(user.role.permission_actions)


async def test_initialize_fails_without_matching_role(session: AsyncSession, service: AuthorizationService) -> None:
    user = await _new_user(session, "orphan@example.com", UserType.PREACHER)

    result = await service.initialize_user_permissions(user)

    assert result.error
    assert result.code == 404
    assert result.data is None


async def test_update_user_permissions_rejects_foreign_actions(
    session: AsyncSession,
    service: AuthorizationService,
    seeded: SeedReport,
) -> None:
    user = await UserRepository(session).find_by_email("listener@example.com")
    before = list(user.permissions)

    result = await service.update_user_permissions(user, ["sermon:read", "ads:create"])

    assert result.error
    assert result.code == 400
    assert result.errors == ["ads:create"]
    assert user.permissions == before


async def test_update_user_permissions_narrows_set(
    session: AsyncSession,
    service: AuthorizationService,
    seeded: SeedReport,
) -> None:
    user = await UserRepository(session).find_by_email("listener@example.com")

    result = await service.update_user_permissions(user, ["sermon:read", "sermon:read"])

    assert not result.error
    assert user.permissions == ["sermon:read"]


# ============================================================================
# Validation and checks
# ============================================================================

def test_validate_permission_assignment_reports_offenders_in_order(service: AuthorizationService) -> None:
    role = {"name": "listener", "permissions": ["sermon:read", "playlist:read"]}

    result = service.validate_permission_assignment(role, ["x:y", "sermon:read", "a:b", "x:y"])

    assert result.error
    assert result.code == 400
    assert result.errors == ["x:y", "a:b", "x:y"]
    assert result.message == "Invalid permissions for role listener: x:y, a:b, x:y"


def test_validate_permission_assignment_accepts_subset(service: AuthorizationService) -> None:
    role = {"name": "listener", "permissions": ["sermon:read", "playlist:read"]}

    result = service.validate_permission_assignment(role, ["playlist:read"])

    assert not result.error
    assert result.data == {"valid_permissions": ["playlist:read"]}


def test_validate_permission_assignment_single_unknown(service: AuthorizationService) -> None:
    result = service.validate_permission_assignment({"name": "user", "permissions": []}, ["x:y"])

    assert result.errors == ["x:y"]


async def test_validate_profile_permissions(service: AuthorizationService, seeded: SeedReport) -> None:
    ok = await service.validate_profile_permissions(UserType.CREATOR, ["sermonbite:create"])
    bad = await service.validate_profile_permissions("creator", ["sermon:create"])
    unknown = await service.validate_profile_permissions("moderator", ["sermon:read"])

    assert not ok.error
    assert bad.errors == ["sermon:create"]
    assert unknown.error and unknown.code == 400


def test_has_permission_on_plain_mapping() -> None:
    subject = {"permissions": ["sermon:read", "playlist:read"]}

    assert AuthorizationService.has_permission(subject, "sermon:read")
    assert not AuthorizationService.has_permission(subject, "sermon:delete")
    assert not AuthorizationService.has_permission({}, "sermon:read")
    assert not AuthorizationService.has_permission(None, "sermon:read")
    assert AuthorizationService.has_all_permissions(subject, ["sermon:read", "playlist:read"])
    assert not AuthorizationService.has_all_permissions(subject, ["sermon:read", "ads:read"])


async def test_actions_of_role(service: AuthorizationService, seeded: SeedReport) -> None:
    role = await service.roles.find_by_slug("user")

    assert sorted(actions_of(role)) == ["sermon:read", "sermonbite:read", "user:read"]


# ============================================================================
# Role reads and grants
# ============================================================================

async def test_get_role_permissions_missing_role(service: AuthorizationService, seeded: SeedReport) -> None:
    assert await service.get_role_permissions("ghost") is None
    assert await service.get_role_permissions("user") == ["sermon:read", "sermonbite:read", "user:read"]


async def test_grant_role_permissions_unions_existing(service: AuthorizationService, seeded: SeedReport) -> None:
    role = (await service.get_role("listener")).data
    before = set(role.permission_actions)

    result = await service.grant_role_permissions("listener", ["ads:read"], expected_version=role.version_id)

    assert not result.error
    assert set(result.data.permission_actions) == before | {"ads:read"}


async def test_grant_role_permissions_rejects_unknown_action(service: AuthorizationService, seeded: SeedReport) -> None:
    result = await service.grant_role_permissions("listener", ["ads:read", "nope:x"])

    assert result.error
    assert result.errors == ["nope:x"]
    assert "ads:read" not in await service.get_role_permissions("listener")


async def test_grant_role_permissions_version_conflict(service: AuthorizationService, seeded: SeedReport) -> None:
    role = (await service.get_role("listener")).data

    result = await service.grant_role_permissions("listener", ["ads:read"], expected_version=role.version_id + 5)

    assert result.error
    assert result.code == 409


async def test_revoke_narrows_member_permissions(
    session: AsyncSession,
    service: AuthorizationService,
    seeded: SeedReport,
) -> None:
    before = await UserRepository(session).find_by_email("listener@example.com")
    assert "playlist:delete" in before.permissions

    revoked = await service.revoke_role_permissions("listener", ["playlist:delete"])
    assert not revoked.error
    await session.commit()

    user = await UserRepository(session).find_by_email("listener@example.com")
    role = await service.roles.find_by_slug("listener")
    assert "playlist:delete" not in user.permissions
    assert set(user.permissions) <= set(role.permission_actions)
    assert not AuthorizationService.has_permission(user, "playlist:delete")
    assert AuthorizationService.has_permission(user, "sermon:read")


async def test_get_role_missing_returns_not_found(service: AuthorizationService) -> None:
    result = await service.get_role("ghost")

    assert result.error
    assert result.code == 404
