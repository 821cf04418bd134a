from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

OtlpProtocol = Literal["grpc", "http/protobuf"]

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def env_bool(key: str, default: bool) -> bool:
    """Read a boolean flag from the environment, keeping ``default`` when unset."""
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


class TelemetryConfig(BaseModel):
    """Where console spans go and how much detail they carry.

    Everything is off the hot path: with no exporter endpoint the OTel API
    hands out no-op tracers and the decorators cost a few attribute writes.
    """

    enabled: bool = Field(
        default=True,
        description="FACTORY_OTEL_ENABLED; false skips provider setup entirely.",
    )
    service_name: str = Field(
        default="factory-console",
        description="FACTORY_OTEL_SERVICE_NAME; the service.name resource attribute.",
    )
    exporter_endpoint: str | None = Field(
        default=None,
        description="OTEL_EXPORTER_OTLP_ENDPOINT; spans are dropped when unset.",
    )
    exporter_protocol: OtlpProtocol = Field(
        default="grpc",
        description="OTEL_EXPORTER_OTLP_PROTOCOL.",
    )
    exporter_headers: dict[str, str] = Field(default_factory=dict)
    batch_spans: bool = Field(
        default=True,
        description="Batch exports in a background thread; tests and CLIs may prefer False.",
    )
    capture_tool_io: bool = Field(
        default=False,
        description=(
            "FACTORY_OTEL_CAPTURE_IO; put tool arguments and results on spans. "
            "Factory and department payloads include phone numbers and addresses."
        ),
    )
    instrument_httpx: bool = Field(
        default=True,
        description="Emit client spans for every backend request.",
    )

    def resolve(self) -> TelemetryConfig:
        """Overlay the process environment onto this config."""
        protocol = os.getenv("OTEL_EXPORTER_OTLP_PROTOCOL", self.exporter_protocol)
        if protocol not in ("grpc", "http/protobuf"):
            protocol = self.exporter_protocol
        return self.model_copy(
            update={
                "enabled": env_bool("FACTORY_OTEL_ENABLED", self.enabled),
                "service_name": os.getenv("FACTORY_OTEL_SERVICE_NAME") or self.service_name,
                "exporter_endpoint": self.exporter_endpoint
                or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
                "exporter_protocol": protocol,
                "capture_tool_io": env_bool("FACTORY_OTEL_CAPTURE_IO", self.capture_tool_io),
            }
        )
