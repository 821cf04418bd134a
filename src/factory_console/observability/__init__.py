from __future__ import annotations

from factory_console.observability.config import TelemetryConfig
from factory_console.observability.logging import (
    TraceContextFilter,
    configure_logging,
    console_user_var,
)
from factory_console.observability.metrics import (
    ConsoleMetrics,
    create_console_metrics,
    get_console_metrics,
)
from factory_console.observability.setup import configure_telemetry
from factory_console.observability.tracing import (
    get_tracer,
    record_permission_decision,
    traced_auth_check,
    traced_cache_operation,
    traced_resource,
    traced_tool,
)

__all__ = [
    "TelemetryConfig",
    "configure_telemetry",
    "configure_logging",
    "console_user_var",
    "TraceContextFilter",
    "get_tracer",
    "traced_tool",
    "traced_resource",
    "traced_cache_operation",
    "traced_auth_check",
    "record_permission_decision",
    "create_console_metrics",
    "get_console_metrics",
    "ConsoleMetrics",
]
