from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from factory_console.api_client import ApiClient
from factory_console.auth import AuthManager
from factory_console.cache import CacheStats
from factory_console.config import ConsoleConfig
from factory_console.entities import EntityContext, EntityService
from factory_console.guard import LoadingTracker, PermissionGuard
from factory_console.notifications import Notifier
from factory_console.permissions import AccessCriteria, PermissionAdminService, PermissionStore
from factory_console.routes import RouteAccessPolicy
from factory_console.services import (
    DepartmentContext,
    DepartmentService,
    FactoryService,
    LineService,
    RoleService,
    TeamService,
)
from factory_console.session import SecurityLevel
from factory_console.storage import SessionStorage

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("department", "factory", "line", "team", "role")


class Console:
    """One authenticated console session against the factory tracking backend.

    Builds the shared pieces once (API client, entity services and their
    caches, permission store, auth manager) and hands out per-consumer
    entity contexts and permission guards.
    """

    def __init__(
        self,
        config: ConsoleConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        cache_clock: Callable[[], float] = time.monotonic,
        storage: SessionStorage | None = None,
    ) -> None:
        self.config = config or ConsoleConfig()
        self.notifier = Notifier()
        self.loading = LoadingTracker()
        self.api = ApiClient(
            self.config.api_base_url, timeout=self.config.request_timeout, transport=transport
        )
        self.storage = storage or SessionStorage(
            self.config.storage_path, secret=self.config.storage_secret
        )
        self.permissions = PermissionStore(notifier=self.notifier)
        self.permission_admin = PermissionAdminService(self.api, self.permissions)
        self.routes = RouteAccessPolicy()

        ttl = self.config.cache_ttl_seconds
        self.services: dict[str, EntityService[Any]] = {
            "department": DepartmentService(self.api, ttl_seconds=ttl, clock=cache_clock),
            "factory": FactoryService(self.api, ttl_seconds=ttl, clock=cache_clock),
            "line": LineService(self.api, ttl_seconds=ttl, clock=cache_clock),
            "team": TeamService(self.api, ttl_seconds=ttl, clock=cache_clock),
            "role": RoleService(self.api, ttl_seconds=ttl, clock=cache_clock),
        }

        self.auth = AuthManager(
            self.api,
            self.storage,
            self.permissions,
            notifier=self.notifier,
            clock=clock,
            security_level=SecurityLevel.parse(self.config.security_level, SecurityLevel.MEDIUM),
            poll_interval=self.config.session_poll_interval,
            debounce=self.config.activity_debounce,
        )
        for service in self.services.values():
            self.auth.register_cache(service.clear_cache)

    @property
    def departments(self) -> DepartmentService:
        return self.services["department"]  # type: ignore[return-value]

    @property
    def factories(self) -> FactoryService:
        return self.services["factory"]  # type: ignore[return-value]

    @property
    def lines(self) -> LineService:
        return self.services["line"]  # type: ignore[return-value]

    @property
    def teams(self) -> TeamService:
        return self.services["team"]  # type: ignore[return-value]

    @property
    def roles(self) -> RoleService:
        return self.services["role"]  # type: ignore[return-value]

    def service(self, entity_type: str) -> EntityService[Any]:
        try:
            return self.services[entity_type]
        except KeyError:
            raise ValueError(
                f"Unknown entity type {entity_type!r}; expected one of {', '.join(ENTITY_TYPES)}"
            ) from None

    def context(self, entity_type: str) -> EntityContext[Any]:
        service = self.service(entity_type)
        if isinstance(service, DepartmentService):
            return DepartmentContext(service, notifier=self.notifier)
        return EntityContext(service, notifier=self.notifier)

    def guard(self, criteria: AccessCriteria | None = None, **kwargs: Any) -> PermissionGuard:
        kwargs.setdefault("settle_delay", self.config.guard_settle_delay)
        kwargs.setdefault("loading", self.loading)
        return PermissionGuard(self.permissions, criteria, **kwargs)

    async def start(self) -> None:
        """Resume a stored session if there is one and start the inactivity monitor."""
        restored = await self.auth.restore()
        logger.info("Console started (%s)", "session restored" if restored else "no session")
        self.auth.monitor.start()

    async def aclose(self) -> None:
        await self.auth.monitor.stop()
        await self.api.aclose()

    async def __aenter__(self) -> Console:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def cache_stats(self) -> list[CacheStats]:
        return [service.cache.stats() for service in self.services.values()]
