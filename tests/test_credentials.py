from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.bootstrap.seeder import SeedReport
from app.features.credentials.models import CredentialEnvironment, CredentialStatus, CredentialType
from app.features.credentials.service import CredentialAuthority, hash_api_key
from app.features.users.repository import UserRepository


@pytest.fixture()
def authority(session: AsyncSession) -> CredentialAuthority:
    return CredentialAuthority(session)


async def _issue(session: AsyncSession, authority: CredentialAuthority, permissions=("sermon:read",)):
    staff = await UserRepository(session).find_by_email("staff@example.com")
    result = await authority.issue(staff, list(permissions))
    assert not result.error, result.message
    return result.data["api_key"], result.data["credential"]


async def test_issue_stores_only_the_hash(session: AsyncSession, authority: CredentialAuthority, seeded: SeedReport) -> None:
    staff = await UserRepository(session).find_by_email("staff@example.com")

    result = await authority.issue(
        staff, ["sermon:read", "sermon:read"], environment=CredentialEnvironment.TEST, key_type=CredentialType.PUBLIC
    )

    raw_key, credential = result.data["api_key"], result.data["credential"]
    assert result.code == 201
    assert raw_key.startswith("pk_test_")
    assert credential.key_hash == hash_api_key(raw_key)
    assert credential.key_hash != raw_key
    assert credential.prefix == raw_key[:12]
    assert credential.permissions == ["sermon:read"]
    assert credential.status == CredentialStatus.ACTIVE


async def test_issue_rejects_permissions_the_owner_lacks(
    session: AsyncSession,
    authority: CredentialAuthority,
    seeded: SeedReport,
) -> None:
    listener = await UserRepository(session).find_by_email("listener@example.com")

    result = await authority.issue(listener, ["sermon:read", "ads:create"])

    assert result.error
    assert result.code == 400
    assert result.errors == ["ads:create"]


async def test_issue_requires_permissions(session: AsyncSession, authority: CredentialAuthority, seeded: SeedReport) -> None:
    staff = await UserRepository(session).find_by_email("staff@example.com")

    result = await authority.issue(staff, [])

    assert result.error and result.code == 400


async def test_verify_returns_scoped_permissions(
    session: AsyncSession,
    authority: CredentialAuthority,
    seeded: SeedReport,
) -> None:
    raw_key, credential = await _issue(session, authority, ("sermon:read", "playlist:read"))

    result = await authority.verify(raw_key)

    assert not result.error
    assert result.data["valid"] is True
    assert result.data["permissions"] == ["sermon:read", "playlist:read"]
    assert credential.last_used_at is not None


async def test_verify_unknown_key(authority: CredentialAuthority, seeded: SeedReport) -> None:
    result = await authority.verify("sk_live_" + "0" * 64)

    assert result.error
    assert result.code == 401
    assert result.message == "Invalid API key"


async def test_expired_key_is_marked_and_rejected(
    session: AsyncSession,
    authority: CredentialAuthority,
    seeded: SeedReport,
) -> None:
    raw_key, credential = await _issue(session, authority)
    credential.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    await session.flush()

    result = await authority.verify(raw_key)

    assert result.error
    assert result.code == 401
    assert result.message == "API key expired"
    assert credential.status == CredentialStatus.EXPIRED


async def test_revocation_is_terminal(session: AsyncSession, authority: CredentialAuthority, seeded: SeedReport) -> None:
    raw_key, credential = await _issue(session, authority)
    superadmin = await UserRepository(session).find_by_email("superadmin@example.com")

    revoked = await authority.revoke(credential.id, superadmin)
    again = await authority.revoke(credential.id, superadmin)
    verified = await authority.verify(raw_key)
    refreshed = await authority.refresh(raw_key)

    assert revoked.message == "API key revoked successfully"
    assert credential.revoked_by_id == superadmin.id
    assert credential.revoked_at is not None
    assert again.message == "API key already revoked"
    assert verified.error and verified.code == 401
    assert refreshed.error and refreshed.code == 401
    with pytest.raises(ValueError):
        credential.status = CredentialStatus.ACTIVE


async def test_revoke_unknown_key(session: AsyncSession, authority: CredentialAuthority, seeded: SeedReport) -> None:
    superadmin = await UserRepository(session).find_by_email("superadmin@example.com")

    result = await authority.revoke("01HZZZZZZZZZZZZZZZZZZZZZZZ", superadmin)

    assert result.error and result.code == 404


async def test_refresh_outside_window_is_refused(
    session: AsyncSession,
    authority: CredentialAuthority,
    seeded: SeedReport,
) -> None:
    raw_key, _ = await _issue(session, authority)

    result = await authority.refresh(raw_key)

    assert result.error
    assert result.code == 400
    assert result.message == "API key is still valid, no refresh needed"


async def test_refresh_inside_window_rotates_key(
    session: AsyncSession,
    authority: CredentialAuthority,
    seeded: SeedReport,
) -> None:
    raw_key, credential = await _issue(session, authority)
    credential.expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
    await session.flush()

    result = await authority.refresh(raw_key)

    new_key = result.data["api_key"]
    assert not result.error
    assert new_key != raw_key
    assert credential.key_hash == hash_api_key(new_key)
    assert (await authority.verify(raw_key)).code == 401
    assert not (await authority.verify(new_key)).error


async def test_list_for_user(session: AsyncSession, authority: CredentialAuthority, seeded: SeedReport) -> None:
    await _issue(session, authority)
    await _issue(session, authority, ("playlist:read",))
    staff = await UserRepository(session).find_by_email("staff@example.com")
    listener = await UserRepository(session).find_by_email("listener@example.com")

    assert len((await authority.list_for_user(staff)).data) == 2
    assert (await authority.list_for_user(listener)).data == []
