"""
Unit tests for the permission catalog and system role table.
"""

from school_authz.security.catalog import (
    DEFAULT_SELF_ACCESS_PERMISSIONS, SYSTEM_ROLES, PermissionCatalog,
    default_catalog, format_permission_name, format_role_name, role_hierarchy
)
from school_authz.security.roles import RoleName


class TestPermissionCatalog:
    """Test cases for PermissionCatalog."""

    def test_default_catalog_contents(self):
        catalog = default_catalog()
        assert len(catalog) == 32
        assert "manage_grades" in catalog
        assert "not_a_real_permission" not in catalog
        assert set(catalog.categories) == {"student", "teacher", "head-teacher", "accounts", "admin"}

    def test_category_of(self):
        catalog = default_catalog()
        assert catalog.category_of("view_own_fees") == "student"
        assert catalog.category_of("manage_fees") == "accounts"
        assert catalog.category_of("unknown") is None

    def test_unknown_returns_sorted_unique(self):
        catalog = default_catalog()
        assert catalog.unknown(["zeta", "manage_grades", "alpha", "zeta"]) == ["alpha", "zeta"]

    def test_grouped_includes_display_names(self):
        grouped = default_catalog().grouped()
        assert {"code": "view_own_fees", "displayName": "View Own Fees"} in grouped["student"]

    def test_version_changes_with_contents(self):
        catalog = default_catalog()
        extended = catalog.with_permissions("teacher", ["set_homework"])
        assert "set_homework" in extended
        assert "set_homework" not in catalog
        assert extended.version != catalog.version
        assert default_catalog().version == catalog.version

    def test_explicit_version_kept(self):
        catalog = PermissionCatalog(categories={"x": ("a",)}, version="2024.1")
        assert catalog.version == "2024.1"

    def test_self_access_permissions_are_in_catalog(self):
        catalog = default_catalog()
        assert DEFAULT_SELF_ACCESS_PERMISSIONS <= catalog.permissions


class TestSystemRoles:
    """Test cases for the built-in role table."""

    def test_six_system_roles(self):
        names = {d.name for d in SYSTEM_ROLES}
        assert names == {RoleName(n) for n in ("admin", "head-teacher", "teacher", "student", "accounts", "parent")}

    def test_every_grant_is_in_catalog(self):
        catalog = default_catalog()
        for definition in SYSTEM_ROLES:
            assert catalog.unknown(definition.permissions) == []

    def test_parent_grants(self):
        parent = next(d for d in SYSTEM_ROLES if d.name == RoleName("parent"))
        assert set(parent.permissions) == {"view_own_fees", "view_own_grades", "view_own_attendance"}

    def test_hierarchy_order(self):
        hierarchy = role_hierarchy()
        assert [h["role"] for h in hierarchy][:2] == ["admin", "head-teacher"]
        assert hierarchy[1]["displayName"] == "Head Teacher"


def test_format_names():
    assert format_permission_name("generate_financial_reports") == "Generate Financial Reports"
    assert format_role_name("head-teacher") == "Head Teacher"
    assert format_role_name(RoleName("HEAD_TEACHER")) == "Head Teacher"
