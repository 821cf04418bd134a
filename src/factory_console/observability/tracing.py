"""Span helpers for the console library and its MCP server.

Every helper works against the global OTel API, so without a configured
provider the spans are no-ops. Exceptions escaping a span are recorded on
it and mark it as an error before propagating unchanged.
"""
from __future__ import annotations

import json
import time
from collections.abc import AsyncIterator, Callable, Coroutine, Mapping
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from opentelemetry import trace

from factory_console.observability.config import env_bool
from factory_console.observability.metrics import get_console_metrics

P = ParamSpec("P")
R = TypeVar("R")

AsyncHandler = Callable[P, Coroutine[Any, Any, R]]

TRACER_NAME = "factory-console"

# Tool arguments never written to spans, even with IO capture on.
_REDACTED_ARGS = frozenset({"ctx", "context", "password"})

# Set by configure_telemetry(); None defers to FACTORY_OTEL_CAPTURE_IO.
_capture_io_default: bool | None = None


def get_tracer(name: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name or TRACER_NAME)


def set_capture_io_default(enabled: bool | None) -> None:
    global _capture_io_default
    _capture_io_default = enabled


def _capture_enabled(explicit: bool | None) -> bool:
    if explicit is not None:
        return explicit
    if _capture_io_default is not None:
        return _capture_io_default
    return env_bool("FACTORY_OTEL_CAPTURE_IO", False)


def _mcp_attributes(method: str, **extra: str) -> dict[str, str]:
    return {"rpc.system": "mcp", "mcp.method.name": method, **extra}


def traced_tool(
    *,
    name: str | None = None,
    capture_io: bool | None = None,
) -> Callable[[AsyncHandler[P, R]], AsyncHandler[P, R]]:
    """Run an MCP tool handler inside a ``tools/call <name>`` span.

    Each call is also counted on ``console.tools.call.total`` by tool and
    status. ``capture_io=None`` follows the telemetry config, or
    ``FACTORY_OTEL_CAPTURE_IO`` before telemetry is configured.
    """

    def decorator(fn: AsyncHandler[P, R]) -> AsyncHandler[P, R]:
        tool_name = name or fn.__name__

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            capture = _capture_enabled(capture_io)
            attributes = _mcp_attributes("tools/call", **{"gen_ai.tool.name": tool_name})
            entity_type = kwargs.get("entity_type")
            if isinstance(entity_type, str):
                attributes["console.entity_type"] = entity_type

            status = "error"
            with get_tracer().start_as_current_span(
                f"tools/call {tool_name}", attributes=attributes
            ) as span:
                try:
                    if capture:
                        arguments = _tool_arguments(kwargs)
                        if arguments:
                            span.set_attribute("tool.parameters", arguments)
                    result = await fn(*args, **kwargs)
                    status = "ok"
                    if capture and result is not None:
                        span.set_attribute("output.value", _as_text(result))
                    return result
                finally:
                    get_console_metrics().tools_call_total.add(
                        1, {"tool": tool_name, "status": status}
                    )

        return wrapper

    return decorator


def traced_resource(
    *, uri: str | None = None
) -> Callable[[AsyncHandler[P, R]], AsyncHandler[P, R]]:
    """Run an MCP resource reader inside a ``resources/read <uri>`` span."""

    def decorator(fn: AsyncHandler[P, R]) -> AsyncHandler[P, R]:
        resource_uri = uri or fn.__name__
        attributes = _mcp_attributes("resources/read", **{"mcp.resource.uri": resource_uri})

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with get_tracer().start_as_current_span(
                f"resources/read {resource_uri}", attributes=attributes
            ):
                return await fn(*args, **kwargs)

        return wrapper

    return decorator


@asynccontextmanager
async def traced_cache_operation(
    operation: str,
    *,
    cache: str,
    key: str | None = None,
    ttl: float | None = None,
) -> AsyncIterator[trace.Span]:
    """Span around one cache operation; callers tag ``cache.outcome`` on it."""
    attributes: dict[str, Any] = {"cache.operation": operation, "cache.name": cache}
    if key is not None:
        attributes["cache.key"] = key
    if ttl is not None:
        attributes["cache.ttl_seconds"] = ttl

    started = time.monotonic()
    with get_tracer().start_as_current_span(f"cache.{operation}", attributes=attributes) as span:
        try:
            yield span
        finally:
            span.set_attribute(
                "cache.duration_ms", round((time.monotonic() - started) * 1000, 2)
            )


@asynccontextmanager
async def traced_auth_check(
    *,
    tool_name: str,
    user_id: str | None = None,
    required: list[str] | None = None,
) -> AsyncIterator[trace.Span]:
    """Span around the login/permission gate of an MCP tool.

    The gate sets ``auth.decision`` on the yielded span.
    """
    attributes: dict[str, Any] = {"gen_ai.tool.name": tool_name}
    if user_id is not None:
        attributes["enduser.id"] = user_id
    if required:
        attributes["auth.required_permissions"] = " ".join(required)

    with get_tracer().start_as_current_span("auth.check_permission", attributes=attributes) as span:
        yield span


def record_permission_decision(criterion: str, code: str | None, granted: bool) -> None:
    """Add a ``permission.check`` event to the active span and count the decision.

    Evaluation is synchronous, so it annotates whatever span is current (a
    tool call, a guard settle) rather than opening one.
    """
    decision = "granted" if granted else "denied"
    span = trace.get_current_span()
    if span.is_recording():
        span.add_event(
            "permission.check",
            {
                "permission.criterion": criterion,
                "permission.code": code or "",
                "permission.decision": decision,
            },
        )
    get_console_metrics().permission_decisions.add(
        1, {"criterion": criterion, "decision": decision}
    )


def _tool_arguments(kwargs: Mapping[str, Any]) -> str | None:
    visible = {k: v for k, v in kwargs.items() if k not in _REDACTED_ARGS}
    return json.dumps(visible, default=str) if visible else None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return repr(value)
