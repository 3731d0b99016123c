import json

import pytest

from app.features.permissions.models import slugify, split_action
from app.features.permissions.registry import PermissionRegistry
from app.features.users.models import UserType


def test_every_default_set_uses_catalog_actions(registry: PermissionRegistry) -> None:
    known = set(registry.actions)
    for user_type in registry.user_types:
        assert set(registry.resolve_defaults(user_type)) <= known
    assert set(registry.fallback) <= known


def test_superadmin_defaults_include_system_restart(registry: PermissionRegistry) -> None:
    assert "system:restart" in registry.resolve_defaults(UserType.SUPERADMIN)
    assert "system:restart" not in registry.resolve_defaults(UserType.LISTENER)
    assert "system:restart" not in registry.resolve_defaults("staff")


def test_unknown_user_type_gets_fallback(registry: PermissionRegistry) -> None:
    assert registry.resolve_defaults("moderator") == registry.fallback
    assert registry.resolve_defaults(None) == ("user:read", "sermon:read", "sermonbite:read")


def test_resolve_defaults_is_case_insensitive(registry: PermissionRegistry) -> None:
    assert registry.resolve_defaults("Listener") == registry.resolve_defaults(UserType.LISTENER)


def test_default_sets_have_no_duplicates(registry: PermissionRegistry) -> None:
    for user_type in registry.user_types:
        actions = registry.resolve_defaults(user_type)
        assert len(actions) == len(set(actions))


def test_registry_rejects_duplicate_catalog_actions() -> None:
    catalog = [{"action": "sermon:read"}, {"action": "sermon:read"}]
    with pytest.raises(ValueError):
        PermissionRegistry(catalog, {}, [])


def test_registry_rejects_malformed_action() -> None:
    with pytest.raises(ValueError):
        PermissionRegistry([{"action": "sermon"}], {}, [])


def test_from_files_reads_user_types(tmp_path) -> None:
    catalog = tmp_path / "permissions.json"
    defaults = tmp_path / "defaults.json"
    catalog.write_text(json.dumps([{"action": "sermon:read", "description": "Read sermons"}]))
    defaults.write_text(json.dumps({"fallback": ["sermon:read"], "user_types": {"Listener": ["sermon:read"]}}))

    registry = PermissionRegistry.from_files(catalog, defaults)

    assert registry.user_types == ("listener",)
    assert registry.is_valid_action("sermon:read")
    assert not registry.is_valid_action("sermon:delete")
    assert registry.catalog[0]["description"] == "Read sermons"


@pytest.mark.parametrize(
    ("name", "slug"),
    [
        ("Super Admin", "super-admin"),
        ("  content   moderators ", "content-moderators"),
        ("Staff/Billing--Team", "staff-billing-team"),
        ("listener", "listener"),
    ],
)
def test_slugify(name: str, slug: str) -> None:
    assert slugify(name) == slug


def test_split_action() -> None:
    assert split_action("sermonbite:create") == ("sermonbite", "create")
    for bad in ("sermon", ":read", "sermon:", "a:b:c"):
        with pytest.raises(ValueError):
            split_action(bad)
