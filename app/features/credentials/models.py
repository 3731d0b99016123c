"""
API key model.

Only the sha256 hash of a key is stored; the raw key is shown once at issuance.
A revoked key is terminal: its status can never move back to active.
"""
from datetime import datetime
import enum
from sqlalchemy import String, ForeignKey, JSON, Text, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.core.database.base import Base, TimestampMixin, generate_ulid


class CredentialEnvironment(str, enum.Enum):
    LIVE = "live"
    TEST = "test"


class CredentialType(str, enum.Enum):
    PUBLIC = "public"
    SECRET = "secret"


class CredentialStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


def _enum_column(enum_cls: type[enum.Enum]) -> SQLEnum:
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False)


class ApiKey(Base, TimestampMixin):
    """Permission-scoped API credential owned by a user."""
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    # First characters of the raw key, for display only
    prefix: Mapped[str] = mapped_column(String(16), nullable=False)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    environment: Mapped[CredentialEnvironment] = mapped_column(_enum_column(CredentialEnvironment), nullable=False)
    type: Mapped[CredentialType] = mapped_column(_enum_column(CredentialType), nullable=False)
    status: Mapped[CredentialStatus] = mapped_column(_enum_column(CredentialStatus), nullable=False, index=True)

    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    user: Mapped["User"] = relationship(  # type: ignore
        "User",
        foreign_keys=[user_id],
        lazy="selectin"
    )

    __mapper_args__ = {"eager_defaults": True}

    @validates("status")
    def _keep_revocation_terminal(self, _key: str, status: CredentialStatus) -> CredentialStatus:
        status = CredentialStatus(status)
        if self.status == CredentialStatus.REVOKED and status != CredentialStatus.REVOKED:
            raise ValueError("A revoked API key cannot be reactivated")
        return status

    @property
    def is_revoked(self) -> bool:
        return self.status == CredentialStatus.REVOKED

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, prefix={self.prefix!r}, status={self.status})>"
