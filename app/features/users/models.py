"""
User model with ULID primary keys.
"""
from datetime import datetime
import enum
from sqlalchemy import String, Boolean, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class UserType(str, enum.Enum):
    """Kinds of accounts on the platform; each has a role of the same name."""
    SUPERADMIN = "superadmin"
    STAFF = "staff"
    PREACHER = "preacher"
    CREATOR = "creator"
    LISTENER = "listener"
    USER = "user"


class User(Base, TimestampMixin):
    """
    User model representing platform accounts.

    ``permissions`` holds the effective permission set, which is always a
    subset of the permissions of the referenced role.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    user_type: Mapped[UserType] = mapped_column(
        SQLEnum(UserType, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=UserType.USER,
    )

    role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Effective permissions (list of action tokens)
    permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_superadmin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    role: Mapped["Role | None"] = relationship(  # type: ignore
        "Role",
        back_populates="users",
        lazy="selectin"
    )

    __mapper_args__ = {"eager_defaults": True}

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, type={self.user_type})>"
