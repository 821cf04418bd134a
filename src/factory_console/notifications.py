from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

NoticeLevel = Literal["info", "success", "warning", "error"]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    title: str
    description: str = ""


class Notifier:
    """User-visible notices: logged, kept in a short history and fanned out to subscribers."""

    def __init__(self, history_size: int = 50) -> None:
        self._subscribers: list[Callable[[Notice], None]] = []
        self._history: list[Notice] = []
        self._history_size = history_size

    def subscribe(self, callback: Callable[[Notice], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, level: NoticeLevel, title: str, description: str = "") -> Notice:
        notice = Notice(level=level, title=title, description=description)
        logger.log(_LOG_LEVELS[level], "%s: %s", title, description)
        self._history.append(notice)
        del self._history[: -self._history_size]
        for callback in list(self._subscribers):
            try:
                callback(notice)
            except Exception:
                logger.exception("Notice subscriber failed")
        return notice

    def info(self, title: str, description: str = "") -> Notice:
        return self.notify("info", title, description)

    def success(self, title: str, description: str = "") -> Notice:
        return self.notify("success", title, description)

    def warning(self, title: str, description: str = "") -> Notice:
        return self.notify("warning", title, description)

    def error(self, title: str, description: str = "") -> Notice:
        return self.notify("error", title, description)

    @property
    def history(self) -> list[Notice]:
        return list(self._history)
