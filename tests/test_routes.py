"""
Tests for the role-based route table.
"""
from __future__ import annotations

from factory_console.routes import NavItem, RouteAccessPolicy


class TestRouteAccess:
    """has_route_access against the default table."""

    def test_dashboard_open_to_every_role(self):
        policy = RouteAccessPolicy()
        for role in ("SUPER_ADMIN", "ADMIN", "MANAGER", "FACTORY_ADMIN", "USER"):
            assert policy.has_route_access("/admin/dashboard", role)

    def test_user_management_limited_to_admins(self):
        policy = RouteAccessPolicy()
        assert policy.has_route_access("/admin/users", "ADMIN")
        assert not policy.has_route_access("/admin/users", "MANAGER")

    def test_unknown_route_and_missing_role_are_denied(self):
        policy = RouteAccessPolicy()
        assert not policy.has_route_access("/admin/unknown", "SUPER_ADMIN")
        assert not policy.has_route_access("/admin/dashboard", None)
        assert not policy.has_route_access("/admin/dashboard", "")

    def test_custom_table(self):
        policy = RouteAccessPolicy({"/reports": ["USER"]})
        assert policy.has_route_access("/reports", "USER")
        assert not policy.has_route_access("/admin/dashboard", "USER")


class TestNavFiltering:
    """filter_nav_items keeps accessible items and prunes their sub-items."""

    def test_filters_items_and_sub_items(self):
        policy = RouteAccessPolicy()
        nav = [
            NavItem("Dashboard", "/admin/dashboard"),
            NavItem(
                "Settings",
                "/admin/settings",
                items=(
                    NavItem("Profile", "/admin/settings/profile"),
                    NavItem("System", "/admin/settings/system-config"),
                ),
            ),
            NavItem("Users", "/admin/users"),
        ]

        visible = policy.filter_nav_items(nav, "MANAGER")

        assert [item.title for item in visible] == ["Dashboard", "Settings"]
        assert [sub.title for sub in visible[1].items] == ["Profile"]

    def test_parent_kept_with_no_accessible_sub_items(self):
        policy = RouteAccessPolicy()
        nav = [
            NavItem(
                "Settings",
                "/admin/settings",
                items=(NavItem("System", "/admin/settings/system-config"),),
            )
        ]

        visible = policy.filter_nav_items(nav, "USER")

        assert visible[0].items == ()

    def test_no_role_sees_nothing(self):
        assert RouteAccessPolicy().filter_nav_items([NavItem("Dashboard", "/admin/dashboard")], None) == []
