from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

ALL_ROLES = ("SUPER_ADMIN", "ADMIN", "MANAGER", "FACTORY_ADMIN", "USER")
_ADMINS = ("SUPER_ADMIN", "ADMIN")
_MANAGEMENT = ("SUPER_ADMIN", "ADMIN", "MANAGER")

DEFAULT_ROUTE_ROLES: dict[str, tuple[str, ...]] = {
    "/admin/dashboard": ALL_ROLES,
    "/admin/users": _ADMINS,
    "/admin/users/all": _ADMINS,
    "/admin/users/groups": _ADMINS,
    "/admin/users/roles": _ADMINS,
    "/admin/departments": _MANAGEMENT,
    "/admin/factories": _MANAGEMENT,
    "/admin/lines": ("SUPER_ADMIN", "ADMIN", "MANAGER", "FACTORY_ADMIN"),
    "/admin/teams": ("SUPER_ADMIN", "ADMIN", "MANAGER", "FACTORY_ADMIN"),
    "/admin/settings": ("SUPER_ADMIN", "ADMIN", "MANAGER", "USER"),
    "/admin/settings/general": _ADMINS,
    "/admin/settings/permissions": _ADMINS,
    "/admin/settings/profile": ("SUPER_ADMIN", "ADMIN", "MANAGER", "USER"),
    "/admin/settings/change-password": ("SUPER_ADMIN", "ADMIN", "MANAGER", "USER"),
    "/admin/settings/system-config": _ADMINS,
    "/admin/settings/permissions-management": _ADMINS,
    "/admin/settings/role-permissions-assignment": _ADMINS,
}


@dataclass(frozen=True)
class NavItem:
    title: str
    url: str
    items: tuple[NavItem, ...] = field(default_factory=tuple)


class RouteAccessPolicy:
    """Role-based route table for the admin area. Routes not listed are denied."""

    def __init__(self, routes: Mapping[str, Iterable[str]] | None = None) -> None:
        source = DEFAULT_ROUTE_ROLES if routes is None else routes
        self._routes = {route: frozenset(roles) for route, roles in source.items()}

    def allowed_roles(self, route: str) -> frozenset[str]:
        return self._routes.get(route, frozenset())

    def has_route_access(self, route: str, role: str | None) -> bool:
        if not role:
            return False
        return role in self.allowed_roles(route)

    def filter_nav_items(self, items: Iterable[NavItem], role: str | None) -> list[NavItem]:
        """Keep the items ``role`` may open; sub-items are filtered one level down."""
        if not role:
            return []
        visible = []
        for item in items:
            if not self.has_route_access(item.url, role):
                continue
            if item.items:
                item = replace(
                    item,
                    items=tuple(sub for sub in item.items if self.has_route_access(sub.url, role)),
                )
            visible.append(item)
        return visible
