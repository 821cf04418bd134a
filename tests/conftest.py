"""
Pytest configuration and fixtures.

The backend is faked with ``httpx.MockTransport``; clocks are plain callables
advanced by hand so freshness and inactivity tests never sleep on wall time.
"""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio

from factory_console.api_client import ApiClient
from factory_console.config import ConsoleConfig
from factory_console.console import Console
from factory_console.storage import SessionStorage

BASE_URL = "http://backend.test/api"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Handler = Callable[[httpx.Request], Any]


class FakeBackend:
    """Route table keyed by (method, path) with the ``/api`` prefix removed."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, data: Any = None, *, status: int = 200, body: Any = None) -> None:
        if body is None:
            body = {"success": status < 400, "data": data}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=body)

        self.routes[(method, path)] = handler

    def add_handler(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def handle(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"success": False, "message": f"No route {path}"})
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.removeprefix("/api") == path
        ]

    def json_body(self, request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def api(backend: FakeBackend):
    client = ApiClient(BASE_URL, transport=backend.transport())
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def console(backend: FakeBackend, clock: FakeClock):
    config = ConsoleConfig(api_base_url=BASE_URL, guard_settle_delay=0.01, activity_debounce=0.01)
    instance = Console(
        config,
        transport=backend.transport(),
        clock=clock,
        cache_clock=clock,
        storage=SessionStorage(),
    )
    yield instance
    await instance.aclose()


@pytest.fixture
def login_routes(backend: FakeBackend) -> FakeBackend:
    """Successful login, profile and permission endpoints."""
    backend.add("POST", "/auth/login", {"token": "tok-1", "expiresIn": 7200})
    backend.add(
        "GET",
        "/auth/me",
        {"id": "u-1", "username": "alice", "fullName": "Alice Nguyen", "role": "ADMIN"},
    )
    backend.add(
        "GET",
        "/permissions/user",
        {
            "permissions": [
                {"code": "department.read", "isActive": True},
                {"code": "factory.read", "isActive": True},
                {"code": "factory.delete", "isActive": False},
            ],
            "pageAccess": ["departments"],
            "featureAccess": ["export"],
            "dataAccess": [],
        },
    )
    backend.add("POST", "/auth/logout", None)
    return backend
