from __future__ import annotations

from typing import Any

from fastmcp import Context, FastMCP

from factory_console.errors import ApiError
from factory_console.models import DepartmentTreeNode, EntityRecord
from factory_console.observability import traced_tool
from server.auth import get_console, requires_login, requires_permission


def _format_record(record: EntityRecord) -> str:
    return f"- {record.name} (id={record.id}, code={record.code})"


def _format_detail(record: EntityRecord) -> str:
    fields = record.model_dump(exclude_none=True)
    return "\n".join(f"{key}: {value}" for key, value in fields.items())


def _format_tree(nodes: list[DepartmentTreeNode], depth: int = 0) -> list[str]:
    lines = []
    for node in nodes:
        lines.append(f"{'  ' * depth}- {node.name} [{node.department_type}] (id={node.id})")
        lines.extend(_format_tree(node.children, depth + 1))
    return lines


def register_tools(mcp: FastMCP) -> None:

    @mcp.tool(tags={"session"})
    @traced_tool()
    async def login(
        username: str,
        password: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Log in to the factory tracking backend and load the user's permissions."""
        console = get_console(ctx)
        user = await console.auth.login({"username": username, "password": password})
        codes = console.permissions.permissions.active_codes
        return (
            f"Logged in as {user.full_name or user.username} (role={user.role or 'n/a'}).\n"
            f"Active permissions: {len(codes)}"
        )

    @mcp.tool(tags={"session"})
    @traced_tool()
    async def logout(
        all_devices: bool = False,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """End the console session; with all_devices, revoke every session of the user."""
        console = get_console(ctx)
        if not console.auth.is_authenticated:
            return "No active session."
        await console.auth.logout(all_devices=all_devices)
        return "Logged out."

    @mcp.tool(tags={"session"})
    @traced_tool()
    @requires_login()
    async def session_status(
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Report token expiry, idle time and the inactivity threshold of the session."""
        console = get_console(ctx)
        info = console.auth.session_info()
        expiry = f"{info.time_to_expiry:.0f}s" if info.time_to_expiry is not None else "unknown"
        return (
            f"User: {info.username}\n"
            f"Valid: {info.is_valid}\n"
            f"Token expires in: {expiry}\n"
            f"Needs refresh: {info.needs_refresh}\n"
            f"Security level: {info.security_level}\n"
            f"Idle: {info.idle_seconds:.0f}s (logout after "
            f"{console.auth.monitor.security_level.timeout_seconds:.0f}s)"
        )

    @mcp.tool(tags={"reader", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.read")
    async def list_entities(
        entity_type: str,
        filters: dict[str, Any] | None = None,
        refresh: bool = False,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """List departments, factories, lines, teams or roles, optionally filtered."""
        console = get_console(ctx)
        records = await console.context(entity_type).list(filters, refresh=refresh)
        if not records:
            return f"No {entity_type} records found."
        return "\n".join(_format_record(record) for record in records)

    @mcp.tool(tags={"reader", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.read")
    async def get_entity(
        entity_type: str,
        entity_id: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Retrieve a single department, factory, line, team or role by ID."""
        console = get_console(ctx)
        try:
            record = await console.context(entity_type).get(entity_id)
        except ApiError as exc:
            if exc.status == 404:
                return f"{entity_type.capitalize()} '{entity_id}' not found."
            raise
        return _format_detail(record)

    @mcp.tool(tags={"editor", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.create")
    async def create_entity(
        entity_type: str,
        data: dict[str, Any],
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Create a record; code and name are required, plus the parent id for lines and teams."""
        console = get_console(ctx)
        record = await console.context(entity_type).create(data)
        return f"Created {entity_type} {record.name} (id={record.id})."

    @mcp.tool(tags={"editor", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.update")
    async def update_entity(
        entity_type: str,
        entity_id: str,
        patch: dict[str, Any],
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Update a record. Empty strings mean "unchanged"; null clears a field."""
        console = get_console(ctx)
        await console.context(entity_type).update(entity_id, patch)
        return f"Updated {entity_type} {entity_id}."

    @mcp.tool(tags={"admin", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.delete")
    async def delete_entity(
        entity_type: str,
        entity_id: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Delete a record by ID."""
        console = get_console(ctx)
        await console.context(entity_type).delete(entity_id)
        return f"Deleted {entity_type} {entity_id}."

    @mcp.tool(tags={"reader", "departments"})
    @traced_tool()
    @requires_permission("department.read")
    async def organization_tree(
        refresh: bool = False,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Show the department hierarchy as an indented tree."""
        console = get_console(ctx)
        context = console.context("department")
        tree = await context.organization_tree(refresh=refresh)  # type: ignore[attr-defined]
        if not tree:
            return "The organization tree is empty."
        return "\n".join(_format_tree(tree))

    @mcp.tool(tags={"reader", "entities"})
    @traced_tool()
    @requires_permission("{entity_type}.read")
    async def refresh_cache(
        entity_type: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Drop every cached list and record of one entity type."""
        console = get_console(ctx)
        service = console.service(entity_type)
        dropped = service.cache.stats().entries
        service.clear_cache()
        return f"Cache cleared for {entity_type}. {dropped} entries dropped."
