"""
Tests for SessionMonitor inactivity handling.
"""
from __future__ import annotations

import asyncio

import pytest

from factory_console.notifications import Notifier
from factory_console.session import SESSION_TIMEOUT, SecurityLevel, SessionMonitor
from factory_console.storage import LAST_ACTIVITY, SECURITY_LEVEL, SessionStorage


class TimeoutRecorder:
    def __init__(self) -> None:
        self.reasons: list[str] = []

    async def __call__(self, reason: str) -> None:
        self.reasons.append(reason)


@pytest.fixture
def recorder() -> TimeoutRecorder:
    return TimeoutRecorder()


def make_monitor(clock, recorder, level=SecurityLevel.STRICT, **kwargs) -> SessionMonitor:
    monitor = SessionMonitor(
        SessionStorage(), recorder, clock=clock, security_level=level, **kwargs
    )
    monitor.session.is_authenticated = True
    return monitor


class TestThresholds:
    """Static inactivity thresholds per security level."""

    def test_threshold_table(self):
        assert SecurityLevel.STRICT.timeout_seconds == 15 * 60
        assert SecurityLevel.HIGH.timeout_seconds == 30 * 60
        assert SecurityLevel.MEDIUM.timeout_seconds == 60 * 60
        assert SecurityLevel.LOW.timeout_seconds == 2 * 60 * 60

    def test_parse(self):
        assert SecurityLevel.parse("high") is SecurityLevel.HIGH
        assert SecurityLevel.parse("bogus", SecurityLevel.LOW) is SecurityLevel.LOW
        with pytest.raises(ValueError):
            SecurityLevel.parse("bogus")


class TestCheck:
    """One inactivity poll."""

    @pytest.mark.asyncio
    async def test_strict_logs_out_after_sixteen_minutes(self, clock, recorder):
        notifier = Notifier()
        monitor = make_monitor(clock, recorder, notifier=notifier)
        monitor.touch()
        clock.advance(16 * 60)

        assert await monitor.check() is True
        assert recorder.reasons == [SESSION_TIMEOUT]
        assert notifier.history[-1].title == "Session expired"

    @pytest.mark.asyncio
    async def test_strict_keeps_session_after_fourteen_minutes(self, clock, recorder):
        monitor = make_monitor(clock, recorder)
        monitor.touch()
        clock.advance(14 * 60)

        assert await monitor.check() is False
        assert recorder.reasons == []

    @pytest.mark.asyncio
    async def test_exactly_at_threshold_is_not_a_timeout(self, clock, recorder):
        monitor = make_monitor(clock, recorder)
        monitor.touch()
        clock.advance(15 * 60)

        assert await monitor.check() is False

    @pytest.mark.asyncio
    async def test_unauthenticated_session_is_ignored(self, clock, recorder):
        monitor = make_monitor(clock, recorder)
        monitor.session.is_authenticated = False
        clock.advance(24 * 60 * 60)

        assert await monitor.check() is False
        assert recorder.reasons == []

    @pytest.mark.asyncio
    async def test_security_level_change_applies_to_next_check(self, clock, recorder):
        monitor = make_monitor(clock, recorder, level=SecurityLevel.LOW)
        monitor.touch()
        clock.advance(20 * 60)
        assert await monitor.check() is False

        monitor.set_security_level("STRICT")

        assert monitor.storage.get(SECURITY_LEVEL) == "STRICT"
        assert await monitor.check() is True


class TestActivity:
    """Debounced activity recording."""

    @pytest.mark.asyncio
    async def test_activity_is_committed_after_debounce(self, clock, recorder):
        monitor = make_monitor(clock, recorder, debounce=0.01)
        start = monitor.session.last_activity_at
        clock.advance(600)

        assert monitor.record_activity("keydown") is True
        assert monitor.session.last_activity_at == start

        await asyncio.sleep(0.05)

        assert monitor.session.last_activity_at == clock.now
        assert monitor.storage.get(LAST_ACTIVITY) == clock.now

    @pytest.mark.asyncio
    async def test_burst_of_events_commits_once(self, clock, recorder):
        monitor = make_monitor(clock, recorder, debounce=0.02)
        writes = []
        original_set = monitor.storage.set

        def counting_set(key, value):
            if key == LAST_ACTIVITY:
                writes.append(value)
            original_set(key, value)

        monitor.storage.set = counting_set  # type: ignore[method-assign]

        for event in ("mousemove", "scroll", "click", "tool_call"):
            monitor.record_activity(event)
        await asyncio.sleep(0.1)

        assert len(writes) == 1

    @pytest.mark.asyncio
    async def test_unknown_events_are_ignored(self, clock, recorder):
        monitor = make_monitor(clock, recorder, debounce=0.01)
        start = monitor.session.last_activity_at
        clock.advance(60)

        assert monitor.record_activity("resize") is False
        await asyncio.sleep(0.03)

        assert monitor.session.last_activity_at == start

    @pytest.mark.asyncio
    async def test_activity_prevents_timeout(self, clock, recorder):
        monitor = make_monitor(clock, recorder, debounce=0.01)
        clock.advance(14 * 60)
        monitor.record_activity("click")
        await asyncio.sleep(0.03)
        clock.advance(14 * 60)

        assert await monitor.check() is False


class TestPollLoop:
    """run/start/stop."""

    @pytest.mark.asyncio
    async def test_poll_loop_fires_timeout(self, clock, recorder):
        monitor = make_monitor(clock, recorder, poll_interval=0.01)
        clock.advance(16 * 60)

        monitor.start()
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert recorder.reasons[:1] == [SESSION_TIMEOUT]

    @pytest.mark.asyncio
    async def test_stop_without_start(self, clock, recorder):
        monitor = make_monitor(clock, recorder)
        await monitor.stop()
