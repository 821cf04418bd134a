from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from fastmcp import Context

from factory_console.console import Console
from factory_console.observability import traced_auth_check
from factory_console.permissions import AccessCriteria

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def get_console(ctx: Context) -> Console:
    return ctx.lifespan_context["console"]


def _find_context(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Context | None:
    for value in (*args, *kwargs.values()):
        if isinstance(value, Context):
            return value
    return None


def requires_permission(code: str | None) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator enforcing the console permission ``code`` at tool invocation time.

    ``code`` may reference tool arguments, e.g. ``"{entity_type}.read"``.
    ``None`` only requires a logged-in session. A permitted call counts as
    session activity. Denials raise ``PermissionError`` before the tool body runs.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            ctx = _find_context(args, kwargs)
            if ctx is None:
                raise PermissionError("No context available for authorization check")

            console = get_console(ctx)
            arguments = signature.bind_partial(*args, **kwargs).arguments
            required = code.format(**arguments) if code else None
            user = console.auth.user

            async with traced_auth_check(
                tool_name=func.__name__,
                user_id=user.id if user else None,
                required=[required] if required else None,
            ) as span:
                if not console.auth.is_authenticated:
                    span.set_attribute("auth.decision", "unauthenticated")
                    raise PermissionError("Not logged in. Call the login tool first.")
                if required and not console.permissions.check(AccessCriteria(permission_code=required)):
                    span.set_attribute("auth.decision", "denied")
                    raise PermissionError(f"Insufficient permissions. Required: {required}")
                span.set_attribute("auth.decision", "allowed")

            console.auth.monitor.record_activity("tool_call")
            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def requires_login() -> Callable[[Callable[P, T]], Callable[P, T]]:
    return requires_permission(None)
