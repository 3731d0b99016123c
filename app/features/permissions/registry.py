"""
Permission registry: the canonical action catalog plus the default permission
set for every user type.

Both come from human-editable JSON files, so adding a permission or changing
what a user type receives by default is a data change, not a code change.
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from app.core import config
from app.features.permissions.models import split_action
from app.features.users.models import UserType
from app.utils import get_logger


log = get_logger(__name__)


def _ordered_unique(actions: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(action.strip() for action in actions))


def load_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


class PermissionRegistry:
    """
    Immutable view over the permission catalog and per-user-type defaults.

    Usage:
        registry = PermissionRegistry.from_files(catalog_path, defaults_path)
        registry.resolve_defaults(UserType.LISTENER)
    """

    def __init__(
        self,
        catalog: Sequence[Mapping[str, str]],
        defaults: Mapping[str, Sequence[str]],
        fallback: Sequence[str],
    ):
        for entry in catalog:
            split_action(entry["action"])
        self._catalog = tuple({"action": e["action"].strip(), "description": e.get("description", "")} for e in catalog)
        self._actions = _ordered_unique(e["action"] for e in self._catalog)
        if len(self._actions) != len(self._catalog):
            raise ValueError("Permission catalog contains duplicate actions")

        self._defaults = {str(k).lower(): _ordered_unique(v) for k, v in defaults.items()}
        self._fallback = _ordered_unique(fallback)

        known = set(self._actions)
        for user_type, actions in list(self._defaults.items()) + [("fallback", self._fallback)]:
            unknown = [a for a in actions if a not in known]
            if unknown:
                log.warning(f"Default set for '{user_type}' references unknown actions: {', '.join(unknown)}")

    @classmethod
    def from_files(cls, catalog_path: Path, defaults_path: Path) -> "PermissionRegistry":
        catalog = load_json(catalog_path)
        defaults = load_json(defaults_path)
        return cls(
            catalog=catalog,
            defaults=defaults.get("user_types", {}),
            fallback=defaults.get("fallback", []),
        )

    @property
    def catalog(self) -> tuple[dict[str, str], ...]:
        """Permission records ({action, description}) in catalog order."""
        return self._catalog

    @property
    def actions(self) -> tuple[str, ...]:
        return self._actions

    @property
    def fallback(self) -> tuple[str, ...]:
        return self._fallback

    @property
    def user_types(self) -> tuple[str, ...]:
        return tuple(self._defaults)

    def is_valid_action(self, action: str) -> bool:
        return action in self._actions

    def resolve_defaults(self, user_type: UserType | str | None) -> tuple[str, ...]:
        """
        Return the default permission set for a user type.

        Unknown or missing user types get the read-only fallback set.
        """
        if user_type is None:
            return self._fallback
        key = user_type.value if isinstance(user_type, UserType) else str(user_type).lower()
        return self._defaults.get(key, self._fallback)


@lru_cache(maxsize=1)
def get_registry() -> PermissionRegistry:
    """Registry built from the configured data files (cached per process)."""
    registry = PermissionRegistry.from_files(
        config.SEED_DATA_DIR / "permissions.json",
        config.PERMISSION_CATALOG_PATH,
    )
    log.info(f"Loaded permission registry with {len(registry.actions)} actions and {len(registry.user_types)} user types")
    return registry
