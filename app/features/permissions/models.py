"""
Permission and Role models for the platform's role-based access control.

- Permissions are atomic ``resource:verb`` actions created once from the catalog
- Roles bundle permissions and keep a back-reference to the users holding them
- Role writes are version-checked so concurrent grants cannot silently overwrite each other
"""
import re
from sqlalchemy import String, ForeignKey, Table, Column, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.core.database.base import Base, TimestampMixin, generate_ulid


_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Return the lowercase, hyphenated form of ``value``."""
    candidate = _SLUG_PATTERN.sub("-", value.strip().lower()).strip("-")
    return re.sub(r"-{2,}", "-", candidate)


def split_action(action: str) -> tuple[str, str]:
    """Split ``resource:verb`` into its parts; raises ValueError on malformed tokens."""
    resource, sep, verb = action.partition(":")
    if not sep or not resource or not verb or ":" in verb:
        raise ValueError(f"Permission action must look like 'resource:verb', got {action!r}")
    return resource, verb


# ============================================================================
# Association Tables
# ============================================================================

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission model defining a single allowed operation.

    Examples:
    - action="sermon:read"
    - action="apikey:disable"
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    action: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    verb: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id, "eager_defaults": True}

    @validates("action")
    def _derive_parts(self, _key: str, action: str) -> str:
        action = action.strip()
        self.resource, self.verb = split_action(action)
        return action

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, action={self.action!r})>"


class Role(Base, TimestampMixin):
    """
    Role model for grouping permissions.

    The slug is recomputed whenever the name is assigned, so it is written in
    the same flush (and transaction) as the name itself.
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(60), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(400), nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        lazy="selectin",
        order_by="Permission.action",
    )

    users: Mapped[list["User"]] = relationship(  # type: ignore
        "User",
        back_populates="role",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id, "eager_defaults": True}

    @validates("name")
    def _sync_slug(self, _key: str, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValueError("Role name cannot be empty")
        self.slug = slugify(name)
        return name

    @property
    def permission_actions(self) -> list[str]:
        """Action tokens granted to this role."""
        return [permission.action for permission in self.permissions]

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, slug={self.slug!r})>"
