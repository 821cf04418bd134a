from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from collections.abc import Callable
from typing import Any, Literal

from factory_console.observability import get_console_metrics, get_tracer
from factory_console.permissions import AccessCriteria, PermissionStore

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = (
    "Access denied: you do not have permission to view this content. "
    "Contact an administrator if you believe this is a mistake."
)

LoadingEvent = Literal["start", "stop"]

_guard_ids = itertools.count(1)


class GuardState(enum.Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class LoadingTracker:
    """Keyed loading indicator shared by everything that can show a spinner."""

    def __init__(self) -> None:
        self._active: dict[str, str] = {}
        self._listeners: list[Callable[[LoadingEvent, str], None]] = []

    def subscribe(self, listener: Callable[[LoadingEvent, str], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, key: str, message: str = "Loading...") -> None:
        self._active[key] = message
        self._emit("start", key)

    def stop(self, key: str) -> None:
        if self._active.pop(key, None) is not None:
            self._emit("stop", key)

    def _emit(self, event: LoadingEvent, key: str) -> None:
        for listener in list(self._listeners):
            listener(event, key)

    @property
    def is_loading(self) -> bool:
        return bool(self._active)

    @property
    def active_keys(self) -> list[str]:
        return list(self._active)

    def message(self) -> str | None:
        return next(reversed(self._active.values()), None)


class PermissionGuard:
    """Gates output on an ``AccessCriteria`` check against a ``PermissionStore``.

    Lifecycle::

        guard = PermissionGuard(store, AccessCriteria(page_code="factories"), loading=tracker)
        guard.mount()              # UNKNOWN, loading started
        await guard.wait_settled() # GRANTED or DENIED, loading stopped
        guard.render(payload)
        guard.unmount()

    After mounting, the guard waits until the store reports its permission set
    as loaded, then holds UNKNOWN for ``settle_delay`` seconds before it
    evaluates. ``unmount`` cancels a pending evaluation and stops the loading
    indicator before it returns; nothing touches the guard or the tracker
    afterwards.
    """

    def __init__(
        self,
        store: PermissionStore,
        criteria: AccessCriteria | None = None,
        *,
        loading: LoadingTracker | None = None,
        settle_delay: float = 0.3,
        fallback: Any = None,
        render_denied: bool = True,
        loading_message: str = "Loading...",
    ) -> None:
        self.store = store
        self.criteria = criteria or AccessCriteria()
        self.loading = loading or LoadingTracker()
        self.settle_delay = settle_delay
        self.fallback = fallback
        self.render_denied = render_denied
        self.loading_message = loading_message
        self.state = GuardState.UNKNOWN
        self._id = next(_guard_ids)
        self._sequence = itertools.count(1)
        self._mounted = False
        self._task: asyncio.Task[None] | None = None
        self._loading_key: str | None = None

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def loading_key(self) -> str | None:
        return self._loading_key

    def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        self.state = GuardState.UNKNOWN
        key = f"permission-guard:{self.criteria.describe()}:{self._id}.{next(self._sequence)}"
        self._loading_key = key
        self.loading.start(key, self.loading_message)
        self._task = asyncio.get_running_loop().create_task(self._settle(key))

    async def _settle(self, key: str) -> None:
        started = time.monotonic()
        await self.store.wait_ready()
        await asyncio.sleep(self.settle_delay)

        with get_tracer().start_as_current_span("guard.settle") as span:
            span.set_attribute("guard.criteria", self.criteria.describe())
            granted = self.store.check(self.criteria)
            self.state = GuardState.GRANTED if granted else GuardState.DENIED
            span.set_attribute("guard.state", self.state.value)

        self._task = None
        if self._loading_key == key:
            self._loading_key = None
            self.loading.stop(key)
        get_console_metrics().guard_settle_duration.record(
            time.monotonic() - started, {"state": self.state.value}
        )
        logger.debug("Guard %s settled %s", self.criteria.describe(), self.state.value)

    def unmount(self) -> None:
        self._mounted = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._loading_key is not None:
            key, self._loading_key = self._loading_key, None
            self.loading.stop(key)

    def update_criteria(self, criteria: AccessCriteria) -> None:
        was_mounted = self._mounted
        self.unmount()
        self.criteria = criteria
        self.state = GuardState.UNKNOWN
        if was_mounted:
            self.mount()

    async def wait_settled(self) -> GuardState:
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.state

    def render(self, children: Any) -> Any:
        if self.state is GuardState.GRANTED:
            return children
        if self.state is GuardState.DENIED:
            if self.fallback is not None:
                return self.fallback
            if self.render_denied:
                return ACCESS_DENIED_MESSAGE
        return None


def page_guard(store: PermissionStore, page_code: str, **kwargs: Any) -> PermissionGuard:
    return PermissionGuard(store, AccessCriteria(page_code=page_code), **kwargs)


def feature_guard(store: PermissionStore, feature_code: str, **kwargs: Any) -> PermissionGuard:
    return PermissionGuard(store, AccessCriteria(feature_code=feature_code), **kwargs)
