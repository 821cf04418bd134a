from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, ClassVar, Literal, get_args

from factory_console.entities import EntityContext, EntityService, RecordT
from factory_console.errors import ApiError, EntityValidationError
from factory_console.models import (
    Department,
    DepartmentCreate,
    DepartmentTreeNode,
    Factory,
    FactoryCreate,
    Line,
    LineCreate,
    ManagerRecord,
    Role,
    RoleCreate,
    RoleRelations,
    Team,
    TeamCreate,
)

logger = logging.getLogger(__name__)

DepartmentType = Literal["HEAD_OFFICE", "FACTORY_OFFICE"]
DEPARTMENT_TYPES: tuple[str, ...] = get_args(DepartmentType)


class ManagedEntityService(EntityService[RecordT]):
    """Entity service whose records have assigned managers under ``/{id}/<segment>``."""

    managers_segment: ClassVar[str] = "managers"

    async def managers(self, entity_id: str) -> list[ManagerRecord]:
        path = f"{self.base_path}/{entity_id}/{self.managers_segment}"

        async def load() -> list[ManagerRecord]:
            data = await self._call("GET", path)
            return [ManagerRecord.model_validate(item) for item in data or []]

        return await self._cached(self.managers_key(entity_id), load)

    async def add_manager(self, entity_id: str, data: Mapping[str, Any]) -> None:
        if not data.get("userId") and not data.get("user_id"):
            raise EntityValidationError(["userId is required"])
        payload = ManagerRecord.model_validate(dict(data)).model_dump(
            by_alias=True, exclude_none=True, mode="json"
        )
        await self._call(
            "POST", f"{self.base_path}/{entity_id}/{self.managers_segment}", json=payload
        )
        self.cache.invalidate(self.managers_key(entity_id))

    async def remove_manager(self, entity_id: str, user_id: str) -> None:
        await self._call(
            "DELETE", f"{self.base_path}/{entity_id}/{self.managers_segment}/{user_id}"
        )
        self.cache.invalidate(self.managers_key(entity_id))

    async def can_manage(self, entity_id: str) -> bool:
        """Whether the current user may manage ``entity_id``; backend failures answer False."""
        try:
            data = await self._call("GET", f"{self.base_path}/{entity_id}/can-manage")
        except ApiError as exc:
            logger.warning("can-manage check for %s %s failed: %s", self.entity_type, entity_id, exc)
            return False
        if isinstance(data, dict):
            data = data.get("data")
        return bool(data)


class DepartmentService(EntityService[Department]):
    entity_type = "department"
    base_path = "/departments"
    record_model = Department
    create_schema = DepartmentCreate
    update_fields = frozenset({"code", "name", "description", "department_type", "parent_id"})

    async def organization_tree(self) -> list[DepartmentTreeNode]:
        async def load() -> list[DepartmentTreeNode]:
            data = await self._call("GET", f"{self.base_path}/tree/organization")
            return [DepartmentTreeNode.model_validate(node) for node in data or []]

        return await self._cached(self.collection_key("tree"), load)

    async def root_departments(self) -> list[Department]:
        # Served from the unfiltered list so a null parentId never reaches the query string.
        return [dept for dept in await self.get_list() if dept.parent_id is None]

    async def by_type(self, department_type: str) -> list[Department]:
        if department_type not in DEPARTMENT_TYPES:
            raise EntityValidationError([f"department type must be one of {', '.join(DEPARTMENT_TYPES)}"])
        return await self.get_list({"departmentType": department_type})

    async def children(self, parent_id: str) -> list[Department]:
        if not parent_id:
            raise EntityValidationError(["parent id is required"])
        return await self.get_list({"parentId": parent_id})

    async def hierarchy(self, department_id: str) -> list[Department]:
        return await self._get_collection(
            "hierarchy", f"{self.base_path}/{department_id}/hierarchy", department_id
        )

    async def by_code(self, code: str) -> Department | None:
        try:
            data = await self._call("GET", f"{self.base_path}/code/{code}")
        except ApiError as exc:
            if exc.status == 404:
                return None
            raise
        return self._parse(data) if data else None


class FactoryService(ManagedEntityService[Factory]):
    entity_type = "factory"
    base_path = "/factories"
    record_model = Factory
    create_schema = FactoryCreate
    update_fields = frozenset(
        {
            "code",
            "name",
            "description",
            "address",
            "phone",
            "department_id",
            "managing_department_id",
            "is_active",
        }
    )

    async def accessible(self) -> list[Factory]:
        return await self._get_collection("accessible", f"{self.base_path}/accessible")

    async def by_department(self, department_id: str) -> list[Factory]:
        return await self._get_collection(
            "by-department", f"{self.base_path}/by-department/{department_id}", department_id
        )

    async def toggle_status(self, factory_id: str) -> Factory:
        data = await self._call("PATCH", f"{self.base_path}/{factory_id}/toggle-status")
        self.invalidate_lists()
        self.invalidate_item(factory_id)
        return self._parse(data)


class LineService(ManagedEntityService[Line]):
    entity_type = "line"
    base_path = "/lines"
    record_model = Line
    create_schema = LineCreate
    update_fields = frozenset({"code", "name", "description", "factory_id", "capacity", "status"})

    async def by_factory(self, factory_id: str) -> list[Line]:
        return await self._get_collection(
            "by-factory", f"{self.base_path}/factory/{factory_id}", factory_id
        )

    async def accessible(self) -> list[Line]:
        return await self._get_collection("accessible", f"{self.base_path}/accessible")


class TeamService(ManagedEntityService[Team]):
    entity_type = "team"
    base_path = "/teams"
    record_model = Team
    create_schema = TeamCreate
    update_fields = frozenset({"code", "name", "description", "line_id"})
    managers_segment = "leaders"

    async def by_line(self, line_id: str) -> list[Team]:
        return await self._get_collection("by-line", f"{self.base_path}/line/{line_id}", line_id)

    async def leaders(self, team_id: str) -> list[ManagerRecord]:
        return await self.managers(team_id)


class RoleService(EntityService[Role]):
    entity_type = "role"
    base_path = "/roles"
    record_model = Role
    create_schema = RoleCreate
    update_fields = frozenset({"code", "name", "description", "level", "is_system"})

    async def by_code(self, code: str) -> Role | None:
        if not code:
            raise EntityValidationError(["code is required"])
        try:
            data = await self._call("GET", f"{self.base_path}/code/{code}")
        except ApiError as exc:
            if exc.status == 404:
                return None
            raise
        return self._parse(data) if data else None

    async def with_relations(self, role_id: str) -> RoleRelations:
        """The role plus its linked users and permissions, cached alongside the lists."""

        async def load() -> RoleRelations:
            data = await self._call("GET", f"{self.base_path}/{role_id}/relations")
            if isinstance(data, dict) and isinstance(data.get("data"), dict):
                data = data["data"]
            return RoleRelations.model_validate(data)

        return await self._cached(self.collection_key("relations", role_id), load)


class DepartmentContext(EntityContext[Department]):
    """Department view that also keeps the organization tree and office lists at hand."""

    service: DepartmentService

    def __init__(self, service: DepartmentService, **kwargs: Any) -> None:
        super().__init__(service, **kwargs)
        self.tree: list[DepartmentTreeNode] = []
        self.roots: list[Department] = []
        self.head_offices: list[Department] = []
        self.factory_offices: list[Department] = []

    async def organization_tree(self, refresh: bool = False) -> list[DepartmentTreeNode]:
        self.tree = await self._read(
            self.service.collection_key("tree"), "load", self.service.organization_tree, refresh
        )
        return self.tree

    async def root_departments(self) -> list[Department]:
        self.roots = await self._track("load", self.service.root_departments())
        return self.roots

    async def by_type(self, department_type: str) -> list[Department]:
        return await self._track("load", self.service.by_type(department_type))

    async def refresh_all(self) -> None:
        """Refetch the tree, root departments and both office lists concurrently."""
        self.service.cache.invalidate(self.service.collection_key("tree"))
        self.service.cache.invalidate(self.service.list_key())
        for department_type in DEPARTMENT_TYPES:
            self.service.cache.invalidate(self.service.list_key({"departmentType": department_type}))

        tree, roots, heads, offices = await asyncio.gather(
            self._track("load", self.service.organization_tree()),
            self._track("load", self.service.root_departments()),
            self._track("load", self.service.by_type("HEAD_OFFICE")),
            self._track("load", self.service.by_type("FACTORY_OFFICE")),
        )
        self.tree, self.roots = tree, roots
        self.head_offices, self.factory_offices = heads, offices
