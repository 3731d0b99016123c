"""
Static seed datasets (roles, permissions, users) read from JSON files.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from app.core import config
from app.features.permissions.registry import load_json


@dataclass(frozen=True)
class SeedDatasets:
    """Ordered seed records, each a flat key/value mapping."""
    roles: list[dict[str, Any]] = field(default_factory=list)
    permissions: list[dict[str, Any]] = field(default_factory=list)
    users: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_directory(cls, directory: Path | None = None) -> "SeedDatasets":
        """
        Load ``roles.json``, ``permissions.json`` and ``users.json`` from a directory.

        Missing files load as empty datasets.
        """
        directory = Path(directory or config.SEED_DATA_DIR)

        def _read(name: str) -> list[dict[str, Any]]:
            path = directory / name
            if not path.exists():
                return []
            data = load_json(path)
            if not isinstance(data, list):
                raise ValueError(f"{path} must contain a JSON array of records")
            return [dict(record) for record in data]

        return cls(
            roles=_read("roles.json"),
            permissions=_read("permissions.json"),
            users=_read("users.json"),
        )
