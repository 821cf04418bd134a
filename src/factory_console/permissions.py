from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from factory_console.api_client import ApiClient
from factory_console.errors import ApiError, EntityValidationError
from factory_console.models import PermissionRecord, UserPermissionsPayload
from factory_console.notifications import Notifier
from factory_console.observability import record_permission_decision

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("page", "feature", "data", "permission")


# --- Permission set ---


@dataclass(frozen=True)
class PermissionSet:
    """Immutable snapshot of the current user's permissions.

    Built wholesale from ``/permissions/user`` and replaced wholesale on
    re-login. A code is granted iff it is present and active.
    """

    granted: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))
    page_access: frozenset[str] = frozenset()
    feature_access: frozenset[str] = frozenset()
    data_access: frozenset[str] = frozenset()

    @classmethod
    def from_payload(cls, payload: UserPermissionsPayload | Mapping[str, Any]) -> PermissionSet:
        if not isinstance(payload, UserPermissionsPayload):
            payload = UserPermissionsPayload.model_validate(payload)
        granted = {grant.code: grant.is_active for grant in payload.permissions}
        return cls(
            granted=MappingProxyType(granted),
            page_access=frozenset(payload.page_access),
            feature_access=frozenset(payload.feature_access),
            data_access=frozenset(payload.data_access),
        )

    @classmethod
    def of(cls, *codes: str, pages: Iterable[str] = (), features: Iterable[str] = ()) -> PermissionSet:
        """Build a set granting ``codes`` directly; handy for fixtures and static roles."""
        return cls(
            granted=MappingProxyType({code: True for code in codes}),
            page_access=frozenset(pages),
            feature_access=frozenset(features),
        )

    @property
    def active_codes(self) -> list[str]:
        return sorted(code for code, active in self.granted.items() if active)


EMPTY_PERMISSIONS = PermissionSet()


# --- Evaluator ---


def has_permission(permissions: PermissionSet, code: str) -> bool:
    return permissions.granted.get(code, False) is True


def has_page_access(permissions: PermissionSet, code: str) -> bool:
    return code in permissions.page_access


def has_feature_access(permissions: PermissionSet, code: str) -> bool:
    return code in permissions.feature_access


def has_data_access(permissions: PermissionSet, code: str) -> bool:
    return code in permissions.data_access


def has_any_permission(permissions: PermissionSet, codes: Iterable[str]) -> bool:
    """True if any code is granted. An empty list grants nothing."""
    return any(has_permission(permissions, code) for code in codes)


def has_all_permissions(permissions: PermissionSet, codes: Iterable[str]) -> bool:
    """True if every code is granted. An empty list is vacuously granted."""
    return all(has_permission(permissions, code) for code in codes)


def can_access_resource(permissions: PermissionSet, resource_type: str, code: str) -> bool:
    if resource_type == "page":
        return has_page_access(permissions, code)
    if resource_type == "feature":
        return has_feature_access(permissions, code)
    if resource_type == "data":
        return has_data_access(permissions, code)
    if resource_type == "permission":
        return has_permission(permissions, code)
    logger.debug("Unknown resource type %r", resource_type)
    return False


@dataclass(frozen=True)
class AccessCriteria:
    """What a guarded piece of output requires.

    Only the first non-empty criterion counts, in the order
    ``permission_code``, ``page_code``, ``feature_code``, ``all_of``, ``any_of``.
    No criteria at all means unrestricted.
    """

    permission_code: str | None = None
    page_code: str | None = None
    feature_code: str | None = None
    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.permission_code:
            return f"permission:{self.permission_code}"
        if self.page_code:
            return f"page:{self.page_code}"
        if self.feature_code:
            return f"feature:{self.feature_code}"
        if self.all_of:
            return f"all:{','.join(self.all_of)}"
        if self.any_of:
            return f"any:{','.join(self.any_of)}"
        return "open"


def check(permissions: PermissionSet, criteria: AccessCriteria) -> bool:
    if criteria.permission_code:
        criterion, code = "permission", criteria.permission_code
        granted = has_permission(permissions, code)
    elif criteria.page_code:
        criterion, code = "page", criteria.page_code
        granted = has_page_access(permissions, code)
    elif criteria.feature_code:
        criterion, code = "feature", criteria.feature_code
        granted = has_feature_access(permissions, code)
    elif criteria.all_of:
        criterion, code = "all_of", ",".join(criteria.all_of)
        granted = has_all_permissions(permissions, criteria.all_of)
    elif criteria.any_of:
        criterion, code = "any_of", ",".join(criteria.any_of)
        granted = has_any_permission(permissions, criteria.any_of)
    else:
        return True
    record_permission_decision(criterion, code, granted)
    return granted


# --- Store ---


class PermissionStore:
    """Holds the current permission set and signals when it has been loaded."""

    def __init__(self, notifier: Notifier | None = None) -> None:
        self.notifier = notifier
        self._permissions = EMPTY_PERMISSIONS
        self._ready = asyncio.Event()

    @property
    def permissions(self) -> PermissionSet:
        return self._permissions

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def replace(self, permissions: PermissionSet) -> None:
        self._permissions = permissions
        self._ready.set()
        logger.info("Permission set loaded: %d active codes", len(permissions.active_codes))

    def clear(self) -> None:
        self._permissions = EMPTY_PERMISSIONS
        self._ready.clear()

    async def load(self, api: ApiClient) -> PermissionSet:
        response = await api.get("/permissions/user")
        if not response.success:
            message = response.error or "Could not load permissions"
            logger.warning("Loading user permissions failed: %s", message)
            if self.notifier is not None:
                self.notifier.error("Could not load permissions", message)
            raise ApiError(message, status=response.status)
        permissions = PermissionSet.from_payload(response.data or {})
        self.replace(permissions)
        return permissions

    def has_permission(self, code: str) -> bool:
        return has_permission(self._permissions, code)

    def has_page_access(self, code: str) -> bool:
        return has_page_access(self._permissions, code)

    def has_feature_access(self, code: str) -> bool:
        return has_feature_access(self._permissions, code)

    def has_data_access(self, code: str) -> bool:
        return has_data_access(self._permissions, code)

    def has_any_permission(self, codes: Iterable[str]) -> bool:
        return has_any_permission(self._permissions, codes)

    def has_all_permissions(self, codes: Iterable[str]) -> bool:
        return has_all_permissions(self._permissions, codes)

    def can_access_resource(self, resource_type: str, code: str) -> bool:
        return can_access_resource(self._permissions, resource_type, code)

    def check(self, criteria: AccessCriteria) -> bool:
        return check(self._permissions, criteria)


# --- Administration ---


def _require_uuids(label: str, values: Iterable[str]) -> list[str]:
    values = list(values)
    errors = []
    for value in values:
        try:
            uuid.UUID(str(value))
        except ValueError:
            errors.append(f"{label} is not a valid UUID: {value}")
    if errors:
        raise EntityValidationError(errors)
    return values


class PermissionAdminService:
    """Permission catalogue and role assignment management."""

    def __init__(self, api: ApiClient, store: PermissionStore) -> None:
        self.api = api
        self.store = store

    async def _call(self, method: str, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        response = await self.api.request(method, path, json=json, params=params)
        if not response.success:
            raise ApiError(response.error or f"{method} {path} failed", status=response.status)
        return response.data

    async def list(self, *, type: str | None = None, search: str | None = None) -> list[PermissionRecord]:
        data = await self._call("GET", "/permissions", params={"type": type, "search": search})
        if isinstance(data, dict):
            data = data.get("data") or []
        return [PermissionRecord.model_validate(item) for item in data or []]

    async def create(self, data: Mapping[str, Any]) -> PermissionRecord:
        code = str(data.get("code") or "").strip()
        name = str(data.get("name") or "").strip()
        errors = [f"{label} is required" for label, value in (("code", code), ("name", name)) if not value]
        if errors:
            raise EntityValidationError(errors)
        created = await self._call("POST", "/permissions", json={**data, "code": code, "name": name})
        return PermissionRecord.model_validate(created)

    async def update(self, permission_id: str, data: Mapping[str, Any]) -> None:
        _require_uuids("permission id", [permission_id])
        await self._call("PATCH", f"/permissions/{permission_id}", json=dict(data))

    async def delete(self, permission_id: str) -> None:
        _require_uuids("permission id", [permission_id])
        await self._call("DELETE", f"/permissions/{permission_id}")

    async def role_permissions(self, role_id: str) -> list[PermissionRecord]:
        _require_uuids("role id", [role_id])
        data = await self._call("GET", f"/permissions/role/{role_id}")
        return [PermissionRecord.model_validate(item) for item in data or []]

    async def assign_to_role(self, role_id: str, permission_ids: Iterable[str]) -> None:
        await self._change_role(role_id, permission_ids, "assign")

    async def remove_from_role(self, role_id: str, permission_ids: Iterable[str]) -> None:
        await self._change_role(role_id, permission_ids, "remove")

    async def _change_role(self, role_id: str, permission_ids: Iterable[str], action: str) -> None:
        _require_uuids("role id", [role_id])
        ids = _require_uuids("permission id", permission_ids)
        if not ids:
            raise EntityValidationError(["permission ids must not be empty"])
        await self._call("POST", f"/permissions/role/{role_id}/{action}", json={"permissionIds": ids})
        logger.info("Role %s: %s %d permissions", role_id, action, len(ids))
        # The current user's own grants may have changed.
        await self.store.load(self.api)
