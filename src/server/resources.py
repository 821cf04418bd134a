from __future__ import annotations

from fastmcp import Context, FastMCP

from factory_console.observability import traced_resource
from server.auth import get_console


def register_resources(mcp: FastMCP) -> None:

    @mcp.resource("console://cache/summary")
    @traced_resource(uri="console://cache/summary")
    async def cache_summary(ctx: Context = Context) -> str:  # type: ignore[assignment]
        """Per entity type: cached entries, fresh entries, in-flight loads, hits, misses and dedup joins."""
        console = get_console(ctx)
        lines = [
            f"{stats.name}: entries={stats.entries} fresh={stats.fresh_entries} "
            f"in_flight={stats.in_flight} hits={stats.hits} misses={stats.misses} "
            f"dedup_joins={stats.dedup_joins}"
            for stats in console.cache_stats()
        ]
        lines.append(f"TTL: {console.config.cache_ttl_seconds:.0f}s")
        return "\n".join(lines)

    @mcp.resource("console://session/status")
    @traced_resource(uri="console://session/status")
    async def session_status(ctx: Context = Context) -> str:  # type: ignore[assignment]
        """Authentication state of the console session."""
        console = get_console(ctx)
        info = console.auth.session_info()
        status = "authenticated" if info.is_valid else "anonymous"
        return (
            f"status: {status}\n"
            f"user: {info.username or '-'}\n"
            f"security_level: {info.security_level}\n"
            f"remaining_before_timeout: {console.auth.monitor.remaining_seconds():.0f}s"
        )
