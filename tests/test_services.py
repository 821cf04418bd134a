"""
Tests for the department, factory, line, team and role specific operations.
"""
from __future__ import annotations

import pytest

from factory_console.errors import EntityValidationError
from factory_console.services import (
    DepartmentContext,
    DepartmentService,
    FactoryService,
    LineService,
    RoleService,
    TeamService,
)

DEPARTMENTS = [
    {"id": "d1", "code": "HQ", "name": "Head Office", "departmentType": "HEAD_OFFICE", "parentId": None},
    {"id": "d2", "code": "FO1", "name": "Factory Office 1", "departmentType": "FACTORY_OFFICE", "parentId": "d1"},
]

TREE = [
    {
        "id": "d1",
        "code": "HQ",
        "name": "Head Office",
        "departmentType": "HEAD_OFFICE",
        "children": [
            {"id": "d2", "code": "FO1", "name": "Factory Office 1", "departmentType": "FACTORY_OFFICE"}
        ],
    }
]


class TestDepartments:
    """Organization tree and derived department lists."""

    @pytest.mark.asyncio
    async def test_organization_tree_is_parsed_and_cached(self, api, backend, clock):
        backend.add("GET", "/departments/tree/organization", TREE)
        service = DepartmentService(api, clock=clock)

        tree = await service.organization_tree()
        await service.organization_tree()

        assert tree[0].children[0].id == "d2"
        assert len(backend.calls("GET", "/departments/tree/organization")) == 1

    @pytest.mark.asyncio
    async def test_tree_is_invalidated_by_create(self, api, backend, clock):
        backend.add("GET", "/departments/tree/organization", TREE)
        backend.add("POST", "/departments", {"id": "d3", "code": "FO2", "name": "Factory Office 2"})
        service = DepartmentService(api, clock=clock)
        await service.organization_tree()

        await service.create({"code": "FO2", "name": "Factory Office 2", "departmentType": "FACTORY_OFFICE"})
        await service.organization_tree()

        assert len(backend.calls("GET", "/departments/tree/organization")) == 2

    @pytest.mark.asyncio
    async def test_root_departments_have_no_parent(self, api, backend, clock):
        backend.add("GET", "/departments", DEPARTMENTS)
        service = DepartmentService(api, clock=clock)

        roots = await service.root_departments()

        assert [dept.id for dept in roots] == ["d1"]

    @pytest.mark.asyncio
    async def test_by_type_filters_on_department_type(self, api, backend, clock):
        backend.add("GET", "/departments", DEPARTMENTS[1:])
        service = DepartmentService(api, clock=clock)

        await service.by_type("FACTORY_OFFICE")

        request = backend.calls("GET", "/departments")[0]
        assert request.url.params["departmentType"] == "FACTORY_OFFICE"

    @pytest.mark.asyncio
    async def test_by_type_rejects_unknown_type(self, api, clock):
        service = DepartmentService(api, clock=clock)

        with pytest.raises(EntityValidationError):
            await service.by_type("WAREHOUSE")

    @pytest.mark.asyncio
    async def test_by_code_returns_none_when_missing(self, api, backend, clock):
        service = DepartmentService(api, clock=clock)

        assert await service.by_code("NOPE") is None

    @pytest.mark.asyncio
    async def test_department_create_requires_three_character_name(self, api, clock):
        service = DepartmentService(api, clock=clock)

        with pytest.raises(EntityValidationError):
            await service.create({"code": "HQ", "name": "HQ"})

    @pytest.mark.asyncio
    async def test_refresh_all_loads_every_view(self, api, backend, clock):
        backend.add("GET", "/departments/tree/organization", TREE)
        backend.add("GET", "/departments", DEPARTMENTS)
        context = DepartmentContext(DepartmentService(api, clock=clock))

        await context.refresh_all()

        assert context.tree[0].id == "d1"
        assert [dept.id for dept in context.roots] == ["d1"]
        assert context.loading is False
        # Unfiltered list plus one request per department type.
        assert len(backend.calls("GET", "/departments")) == 3


class TestFactories:
    """Factory sub-resources."""

    @pytest.mark.asyncio
    async def test_manager_mutations_invalidate_managers(self, api, backend, clock):
        backend.add("GET", "/factories/f1/managers", [{"userId": "u1", "isPrimary": True}])
        backend.add("POST", "/factories/f1/managers", None)
        service = FactoryService(api, clock=clock)
        managers = await service.managers("f1")

        await service.add_manager("f1", {"userId": "u2"})
        await service.managers("f1")

        assert managers[0].user_id == "u1"
        assert len(backend.calls("GET", "/factories/f1/managers")) == 2
        body = backend.json_body(backend.calls("POST", "/factories/f1/managers")[0])
        assert body["userId"] == "u2"

    @pytest.mark.asyncio
    async def test_add_manager_requires_user(self, api, clock):
        service = FactoryService(api, clock=clock)

        with pytest.raises(EntityValidationError):
            await service.add_manager("f1", {"isPrimary": True})

    @pytest.mark.asyncio
    async def test_toggle_status_invalidates_lists(self, api, backend, clock):
        backend.add("GET", "/factories", [{"id": "f1", "code": "F01", "name": "North"}])
        backend.add("PATCH", "/factories/f1/toggle-status", {"id": "f1", "code": "F01", "name": "North", "isActive": False})
        service = FactoryService(api, clock=clock)
        await service.get_list()

        factory = await service.toggle_status("f1")

        assert factory.is_active is False
        assert service.cached_list() is None

    @pytest.mark.asyncio
    async def test_by_department_path(self, api, backend, clock):
        backend.add("GET", "/factories/by-department/d2", [{"id": "f1"}])
        service = FactoryService(api, clock=clock)

        factories = await service.by_department("d2")

        assert [factory.id for factory in factories] == ["f1"]


class TestLinesAndTeams:
    """Line and team sub-resources."""

    @pytest.mark.asyncio
    async def test_by_factory(self, api, backend, clock):
        backend.add("GET", "/lines/factory/f1", [{"id": "l1", "factoryId": "f1", "capacity": 40}])
        service = LineService(api, clock=clock)

        lines = await service.by_factory("f1")

        assert lines[0].capacity == 40

    @pytest.mark.asyncio
    async def test_can_manage_true(self, api, backend, clock):
        backend.add("GET", "/lines/l1/can-manage", True)

        assert await LineService(api, clock=clock).can_manage("l1") is True

    @pytest.mark.asyncio
    async def test_can_manage_is_false_on_backend_error(self, api, backend, clock):
        backend.add("GET", "/lines/l1/can-manage", status=403, body={})

        assert await LineService(api, clock=clock).can_manage("l1") is False

    @pytest.mark.asyncio
    async def test_team_can_manage_uses_team_path(self, api, backend, clock):
        backend.add("GET", "/teams/t1/can-manage", {"data": True})

        assert await TeamService(api, clock=clock).can_manage("t1") is True
        assert len(backend.calls("GET", "/teams/t1/can-manage")) == 1

    @pytest.mark.asyncio
    async def test_team_leaders_use_leaders_path(self, api, backend, clock):
        backend.add("GET", "/teams/t1/leaders", [{"userId": "u7"}])
        service = TeamService(api, clock=clock)

        leaders = await service.leaders("t1")

        assert leaders[0].user_id == "u7"

    @pytest.mark.asyncio
    async def test_teams_by_line(self, api, backend, clock):
        backend.add("GET", "/teams/line/l1", [{"id": "t1", "lineId": "l1"}])

        teams = await TeamService(api, clock=clock).by_line("l1")

        assert teams[0].line_id == "l1"


class TestRoles:
    """Role lookups by code and with relations."""

    @pytest.mark.asyncio
    async def test_list_roles(self, api, backend, clock):
        backend.add("GET", "/roles", [{"id": "r1", "code": "ADMIN", "name": "Administrator", "level": 1, "isSystem": True}])

        roles = await RoleService(api, clock=clock).get_list()

        assert roles[0].level == 1
        assert roles[0].is_system is True

    @pytest.mark.asyncio
    async def test_by_code(self, api, backend, clock):
        backend.add("GET", "/roles/code/ADMIN", {"id": "r1", "code": "ADMIN", "name": "Administrator"})

        role = await RoleService(api, clock=clock).by_code("ADMIN")

        assert role is not None and role.id == "r1"

    @pytest.mark.asyncio
    async def test_by_code_missing_returns_none(self, api, backend, clock):
        backend.add("GET", "/roles/code/NOPE", status=404, body={"message": "Role not found"})

        assert await RoleService(api, clock=clock).by_code("NOPE") is None

    @pytest.mark.asyncio
    async def test_with_relations_is_cached_until_a_mutation(self, api, backend, clock):
        backend.add(
            "GET",
            "/roles/r1/relations",
            {
                "id": "r1",
                "code": "LEAD",
                "name": "Team Lead",
                "users": [{"id": "u1"}],
                "permissions": [{"code": "team.read"}, {"code": "team.update"}],
            },
        )
        backend.add("PATCH", "/roles/r1", {"id": "r1", "code": "LEAD", "name": "Team Leader"})
        service = RoleService(api, clock=clock)

        role = await service.with_relations("r1")
        await service.with_relations("r1")

        assert [permission["code"] for permission in role.permissions] == ["team.read", "team.update"]
        assert len(backend.calls("GET", "/roles/r1/relations")) == 1

        await service.update("r1", {"name": "Team Leader"})
        await service.with_relations("r1")

        assert len(backend.calls("GET", "/roles/r1/relations")) == 2

    @pytest.mark.asyncio
    async def test_create_validates_level(self, api, backend, clock):
        with pytest.raises(EntityValidationError):
            await RoleService(api, clock=clock).create({"code": "QA", "name": "Quality", "level": -1})

        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_role_is_registered_on_console(self, console):
        assert console.service("role") is console.roles
        assert console.context("role").entity_type == "role"
