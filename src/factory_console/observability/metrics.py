from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from opentelemetry import metrics

_METER_NAME = "factory-console"


@dataclass(frozen=True)
class ConsoleMetrics:
    """Metric instruments for the console's cache, permission and session layers."""

    # --- Cache / dedup ---
    cache_hits: metrics.Counter = field(repr=False)
    cache_misses: metrics.Counter = field(repr=False)
    cache_dedup_joins: metrics.Counter = field(repr=False)
    cache_fetch_errors: metrics.Counter = field(repr=False)
    cache_fetch_duration: metrics.Histogram = field(repr=False)
    cache_invalidations: metrics.Counter = field(repr=False)

    # --- Permissions ---
    permission_decisions: metrics.Counter = field(repr=False)
    guard_settle_duration: metrics.Histogram = field(repr=False)

    # --- Session ---
    session_logouts: metrics.Counter = field(repr=False)

    # --- MCP surface ---
    tools_call_total: metrics.Counter = field(repr=False)


def create_console_metrics(meter_name: str | None = None) -> ConsoleMetrics:
    """Create the console metric instruments on the given meter."""
    meter = metrics.get_meter(meter_name or _METER_NAME)

    return ConsoleMetrics(
        cache_hits=meter.create_counter(
            name="console.cache.hits",
            description="Fetches answered from a fresh cache entry",
        ),
        cache_misses=meter.create_counter(
            name="console.cache.misses",
            description="Fetches that invoked the loader",
        ),
        cache_dedup_joins=meter.create_counter(
            name="console.cache.dedup_joins",
            description="Fetches that joined an in-flight request for the same key",
        ),
        cache_fetch_errors=meter.create_counter(
            name="console.cache.fetch.errors",
            description="Loader invocations that raised",
        ),
        cache_fetch_duration=meter.create_histogram(
            name="console.cache.fetch.duration",
            description="Duration of loader invocations",
            unit="s",
        ),
        cache_invalidations=meter.create_counter(
            name="console.cache.invalidations",
            description="Cache entries dropped by invalidation, by scope",
        ),
        permission_decisions=meter.create_counter(
            name="console.permission.decisions",
            description="Permission checks by criterion and outcome",
        ),
        guard_settle_duration=meter.create_histogram(
            name="console.guard.settle.duration",
            description="Time a permission guard spent in UNKNOWN",
            unit="s",
        ),
        session_logouts=meter.create_counter(
            name="console.session.logouts",
            description="Logouts by reason",
        ),
        tools_call_total=meter.create_counter(
            name="console.tools.call.total",
            description="MCP tool invocations by tool name and status",
        ),
    )


@lru_cache(maxsize=None)
def get_console_metrics() -> ConsoleMetrics:
    """Process-wide instruments; created lazily so a meter provider set at startup is used."""
    return create_console_metrics()
