"""
Lock rows used to keep concurrently starting instances from seeding twice.
"""
from datetime import datetime
from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base


class BootstrapLock(Base):
    """A row exists while some process is running the named job."""
    __tablename__ = "bootstrap_locks"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<BootstrapLock(name={self.name!r}, owner={self.owner!r})>"
