from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import TextIO

from opentelemetry import trace

# Username of the console session on whose behalf the current task runs.
console_user_var: ContextVar[str | None] = ContextVar("console_user", default=None)

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
TRACED_FORMAT = (
    "%(asctime)s %(levelname)-7s %(name)s [trace=%(trace_id)s span=%(span_id)s "
    "user=%(console_user)s]: %(message)s"
)

# Libraries that log each request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


class TraceContextFilter(logging.Filter):
    """Stamp records with the active span ids and the console user.

    Outside a span both ids are empty strings; without a login the user is ``-``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        valid = span_context.is_valid
        record.trace_id = trace.format_trace_id(span_context.trace_id) if valid else ""
        record.span_id = trace.format_span_id(span_context.span_id) if valid else ""
        record.console_user = console_user_var.get() or "-"
        return True


def configure_logging(
    level: str = "INFO",
    *,
    include_trace_context: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Replace the root handlers with a single stream handler.

    Output goes to ``stderr`` by default since the stdio MCP transport owns
    ``stdout``. Unknown level names fall back to INFO.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    if include_trace_context:
        handler.addFilter(TraceContextFilter())
        handler.setFormatter(logging.Formatter(TRACED_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    logging.basicConfig(
        level=logging.getLevelNamesMapping().get(level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
