"""
Credential authority: issues, verifies, refreshes and revokes API keys.

A key's permissions are checked against the owner's effective permissions
when it is issued. They are not re-checked later if the owner's role narrows.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import (
    AuthenticationError,
    CredentialNotFound,
    Result,
    ValidationError,
    returns_result,
)
from app.features.credentials.models import (
    ApiKey,
    CredentialEnvironment,
    CredentialStatus,
    CredentialType,
)
from app.features.permissions.service import actions_of
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def hash_api_key(raw_key: str) -> str:
    """Hash API key for storage and lookup."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(environment: CredentialEnvironment, key_type: CredentialType) -> str:
    kind = "sk" if key_type == CredentialType.SECRET else "pk"
    return f"{kind}_{environment.value}_{secrets.token_hex(32)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialAuthority:
    """
    API key lifecycle bound to a single session.

    Usage:
        authority = CredentialAuthority(db)
        result = await authority.issue(user, ["sermon:read"])
        raw_key = result.data["api_key"]  # shown once
    """

    def __init__(
        self,
        session: AsyncSession,
        expiry_days: int | None = None,
        refresh_window_hours: int | None = None,
    ):
        self.session = session
        self.expiry = timedelta(days=config.API_KEY_EXPIRY_DAYS if expiry_days is None else expiry_days)
        self.refresh_window = timedelta(
            hours=config.API_KEY_REFRESH_WINDOW_HOURS if refresh_window_hours is None else refresh_window_hours
        )

    async def rollback(self) -> None:
        if self.session.in_transaction() and (self.session.new or self.session.dirty or not self.session.is_active):
            await self.session.rollback()

    async def _find_by_raw_key(self, raw_key: str) -> ApiKey:
        if not raw_key:
            raise AuthenticationError("API key required")
        result = await self.session.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key)))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            raise AuthenticationError("Invalid API key")
        return api_key

    async def find_by_id(self, credential_id: str) -> ApiKey:
        api_key = await self.session.get(ApiKey, credential_id)
        if api_key is None:
            raise CredentialNotFound(f"API key '{credential_id}' not found")
        return api_key

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @returns_result
    async def issue(
        self,
        owner: User,
        permissions: Sequence[str],
        environment: CredentialEnvironment = CredentialEnvironment.LIVE,
        key_type: CredentialType = CredentialType.SECRET,
        description: Optional[str] = None,
    ) -> Result:
        """
        Issue a new API key for ``owner``.

        The requested permissions must all be held by the owner right now.

        Returns:
            Result with ``{"api_key": <raw key>, "credential": ApiKey}``; the raw
            key is not stored and cannot be recovered later.
        """
        requested = list(dict.fromkeys(permissions))
        if not requested:
            raise ValidationError("At least one permission is required")
        if not owner.is_active:
            raise ValidationError("Cannot issue API keys for a deactivated user", [owner.id])

        held = set(actions_of(owner))
        exceeding = [p for p in requested if p not in held]
        if exceeding:
            raise ValidationError(
                f"Requested permissions exceed the owner's permissions: {', '.join(exceeding)}",
                exceeding,
            )

        raw_key = generate_api_key(environment, key_type)
        api_key = ApiKey(
            key_hash=hash_api_key(raw_key),
            prefix=raw_key[:12],
            user_id=owner.id,
            user=owner,
            environment=environment,
            type=key_type,
            status=CredentialStatus.ACTIVE,
            permissions=requested,
            description=description,
            expires_at=_utcnow() + self.expiry,
        )
        self.session.add(api_key)
        await self.session.flush()

        log.info(f"Issued {key_type.value} API key {api_key.prefix}... for user {owner.id}")
        return Result.ok(
            data={"api_key": raw_key, "credential": api_key},
            message="API Key generated successfully",
            code=201,
        )

    @returns_result
    async def verify(self, raw_key: str) -> Result:
        """Check a presented key and return the permissions it grants."""
        api_key = await self._find_by_raw_key(raw_key)

        if api_key.status == CredentialStatus.REVOKED:
            raise AuthenticationError("API key has been revoked")

        now = _utcnow()
        expires_at = _as_utc(api_key.expires_at)
        if api_key.status == CredentialStatus.EXPIRED or (expires_at and now > expires_at):
            if api_key.status != CredentialStatus.EXPIRED:
                api_key.status = CredentialStatus.EXPIRED
                await self.session.flush()
                # Keep the status change even though the caller gets an error
                await self.session.commit()
            raise AuthenticationError("API key expired")

        api_key.last_used_at = now
        await self.session.flush()
        return Result.ok(
            data={"valid": True, "permissions": list(api_key.permissions), "credential": api_key},
            message="API Key is valid",
        )

    @returns_result
    async def refresh(self, raw_key: str) -> Result:
        """Rotate a key that is about to expire (or already has)."""
        api_key = await self._find_by_raw_key(raw_key)
        if api_key.status == CredentialStatus.REVOKED:
            raise AuthenticationError("API key has been revoked")

        expires_at = _as_utc(api_key.expires_at)
        if expires_at and expires_at - _utcnow() > self.refresh_window:
            raise ValidationError("API key is still valid, no refresh needed")

        new_key = generate_api_key(api_key.environment, api_key.type)
        api_key.key_hash = hash_api_key(new_key)
        api_key.prefix = new_key[:12]
        api_key.expires_at = _utcnow() + self.expiry
        api_key.status = CredentialStatus.ACTIVE
        await self.session.flush()

        log.info(f"Refreshed API key {api_key.id}")
        return Result.ok(data={"api_key": new_key, "credential": api_key}, message="API Key refreshed successfully")

    @returns_result
    async def revoke(self, credential_id: str, revoked_by: User) -> Result:
        """Revoke a key. Revocation is permanent; revoking twice is a no-op."""
        api_key = await self.find_by_id(credential_id)
        if api_key.is_revoked:
            return Result.ok(data=api_key, message="API key already revoked")

        api_key.status = CredentialStatus.REVOKED
        api_key.revoked_at = _utcnow()
        api_key.revoked_by_id = revoked_by.id
        await self.session.flush()

        log.info(f"API key {api_key.id} revoked by user {revoked_by.id}")
        return Result.ok(data=api_key, message="API key revoked successfully")

    @returns_result
    async def list_for_user(self, owner: User) -> Result:
        result = await self.session.execute(
            select(ApiKey).where(ApiKey.user_id == owner.id).order_by(ApiKey.created_at.desc())
        )
        return Result.ok(data=list(result.scalars().all()))

    @returns_result
    async def get(self, credential_id: str) -> Result:
        return Result.ok(data=await self.find_by_id(credential_id))
