from __future__ import annotations

import os

from pydantic import BaseModel, Field

from factory_console.observability.config import TelemetryConfig


class ConsoleConfig(BaseModel):
    """Runtime settings for a factory console session."""

    api_base_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the factory tracking REST backend. Falls back to FACTORY_API_URL.",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds for backend calls.",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        description="Freshness window for cached entity lists and items.",
    )
    guard_settle_delay: float = Field(
        default=0.3,
        description=(
            "Seconds a permission guard stays UNKNOWN after permissions are ready, "
            "masking flicker between consecutive evaluations."
        ),
    )
    session_poll_interval: float = Field(
        default=60.0,
        description="Seconds between inactivity checks of the session monitor.",
    )
    activity_debounce: float = Field(
        default=0.3,
        description="Trailing debounce applied to user-activity events before they are committed.",
    )
    security_level: str = Field(
        default="MEDIUM",
        description="Initial security level: LOW, MEDIUM, HIGH or STRICT.",
    )
    storage_path: str | None = Field(
        default=None,
        description="JSON file holding persisted session keys; in-memory when unset.",
    )
    storage_secret: str | None = Field(
        default=None,
        description=(
            "Fernet key used to encrypt the stored user snapshot. When unset a key is "
            "generated per process and snapshots do not survive restarts."
        ),
    )
    log_level: str = Field(
        default="INFO",
        description="Python logging level.",
    )
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    def resolve(self) -> ConsoleConfig:
        """Return a copy with env-var fallbacks applied."""
        return self.model_copy(
            update={
                "api_base_url": os.getenv("FACTORY_API_URL", self.api_base_url),
                "request_timeout": float(
                    os.getenv("FACTORY_REQUEST_TIMEOUT", self.request_timeout)
                ),
                "cache_ttl_seconds": float(
                    os.getenv("FACTORY_CACHE_TTL_SECONDS", self.cache_ttl_seconds)
                ),
                "guard_settle_delay": float(
                    os.getenv("FACTORY_GUARD_SETTLE_DELAY", self.guard_settle_delay)
                ),
                "session_poll_interval": float(
                    os.getenv("FACTORY_SESSION_POLL_SECONDS", self.session_poll_interval)
                ),
                "security_level": os.getenv(
                    "FACTORY_SECURITY_LEVEL", self.security_level
                ).upper(),
                "storage_path": self.storage_path or os.getenv("FACTORY_STORAGE_PATH"),
                "storage_secret": self.storage_secret
                or os.getenv("FACTORY_STORAGE_SECRET"),
                "log_level": os.getenv("FACTORY_LOG_LEVEL", self.log_level),
                "telemetry": self.telemetry.resolve(),
            }
        )
