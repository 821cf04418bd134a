from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from factory_console.notifications import Notifier
from factory_console.storage import LAST_ACTIVITY, SECURITY_LEVEL, SessionStorage

logger = logging.getLogger(__name__)

SESSION_TIMEOUT = "session_timeout"

ACTIVITY_EVENTS = frozenset({"mousemove", "keydown", "click", "scroll", "touchstart", "tool_call"})


class SecurityLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    STRICT = "STRICT"

    @property
    def timeout_seconds(self) -> float:
        return _INACTIVITY_TIMEOUTS[self]

    @classmethod
    def parse(cls, value: str | SecurityLevel | None, default: SecurityLevel | None = None) -> SecurityLevel:
        if isinstance(value, SecurityLevel):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            if default is None:
                raise
            logger.warning("Unknown security level %r, using %s", value, default.value)
            return default


_INACTIVITY_TIMEOUTS: dict[SecurityLevel, float] = {
    SecurityLevel.LOW: 2 * 60 * 60,
    SecurityLevel.MEDIUM: 60 * 60,
    SecurityLevel.HIGH: 30 * 60,
    SecurityLevel.STRICT: 15 * 60,
}


@dataclass
class SecuritySession:
    last_activity_at: float
    security_level: SecurityLevel = SecurityLevel.MEDIUM
    is_authenticated: bool = False


class SessionMonitor:
    """Logs the user out after a period of inactivity.

    Activity events are debounced before they move ``last_activity_at``; a
    poll loop compares the idle time against the threshold of the current
    security level.
    """

    def __init__(
        self,
        storage: SessionStorage,
        on_timeout: Callable[[str], Awaitable[None]],
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        poll_interval: float = 60.0,
        debounce: float = 0.3,
        security_level: SecurityLevel = SecurityLevel.MEDIUM,
    ) -> None:
        self.storage = storage
        self.on_timeout = on_timeout
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.debounce = debounce
        self._clock = clock
        self.session = SecuritySession(last_activity_at=clock(), security_level=security_level)
        self._pending: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._timing_out = False

    # --- activity ---

    @property
    def security_level(self) -> SecurityLevel:
        return self.session.security_level

    def set_security_level(self, level: SecurityLevel | str) -> None:
        self.session.security_level = SecurityLevel.parse(level)
        self.storage.set(SECURITY_LEVEL, self.session.security_level.value)
        logger.info("Security level set to %s", self.session.security_level.value)

    def record_activity(self, event: str) -> bool:
        """Note a user interaction; returns False for events that do not count as activity."""
        if event not in ACTIVITY_EVENTS:
            return False
        self.discard_pending()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.touch()
            return True
        self._pending = loop.call_later(self.debounce, self.touch)
        return True

    def discard_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def touch(self) -> None:
        """Commit activity now, bypassing the debounce."""
        self._pending = None
        self.session.last_activity_at = self._clock()
        self.storage.set(LAST_ACTIVITY, self.session.last_activity_at)

    def restore(self) -> None:
        stored = self.storage.get(LAST_ACTIVITY)
        if isinstance(stored, (int, float)):
            self.session.last_activity_at = float(stored)
        level = self.storage.get(SECURITY_LEVEL)
        if level:
            self.session.security_level = SecurityLevel.parse(level, self.session.security_level)

    def idle_seconds(self) -> float:
        return self._clock() - self.session.last_activity_at

    def remaining_seconds(self) -> float:
        return max(0.0, self.security_level.timeout_seconds - self.idle_seconds())

    # --- polling ---

    async def check(self) -> bool:
        """Run one inactivity check; returns True when it logged the user out."""
        if not self.session.is_authenticated or self._timing_out:
            return False
        idle = self.idle_seconds()
        if idle <= self.security_level.timeout_seconds:
            return False

        logger.info(
            "Inactive for %.0fs at %s level; logging out", idle, self.security_level.value
        )
        if self.notifier is not None:
            self.notifier.warning(
                "Session expired",
                "You were logged out after a period of inactivity. Please log in again.",
            )
        self._timing_out = True
        try:
            await self.on_timeout(SESSION_TIMEOUT)
        finally:
            self._timing_out = False
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Inactivity check failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        self.discard_pending()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
