from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from factory_console.api_client import ApiClient
from factory_console.errors import ApiError, EntityValidationError, NotAuthenticatedError
from factory_console.models import AuthUser, LoginCredentials
from factory_console.notifications import Notifier
from factory_console.observability import console_user_var, get_console_metrics
from factory_console.permissions import PermissionStore
from factory_console.session import SecurityLevel, SessionMonitor
from factory_console.storage import AUTH_TOKEN, TOKEN_EXPIRES_AT, SessionStorage

logger = logging.getLogger(__name__)

REFRESH_WINDOW_SECONDS = 60 * 60

USER_LOGOUT = "user_logout"


class AuthService:
    """Calls to the ``/auth`` endpoints."""

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def _post(self, path: str, json: Any = None) -> Any:
        response = await self.api.post(path, json=json if json is not None else {})
        if not response.success:
            raise ApiError(response.error or f"POST {path} failed", status=response.status)
        return response.data or {}

    async def login(self, credentials: LoginCredentials) -> dict[str, Any]:
        return await self._post(
            "/auth/login",
            {
                "username": credentials.username,
                "password": credentials.password,
                "rememberMe": credentials.remember_me,
            },
        )

    async def refresh(self) -> dict[str, Any]:
        return await self._post("/auth/refresh")

    async def logout(self, all_devices: bool = False) -> None:
        await self._post("/auth/logout-all" if all_devices else "/auth/logout")

    async def me(self) -> AuthUser:
        response = await self.api.get("/auth/me")
        if not response.success:
            raise ApiError(response.error or "Could not load the current user", status=response.status)
        return AuthUser.model_validate(response.data)


@dataclass(frozen=True)
class SessionInfo:
    is_authenticated: bool
    is_valid: bool
    is_expired: bool
    needs_refresh: bool
    time_to_expiry: float | None
    last_activity_at: float
    idle_seconds: float
    security_level: str
    username: str | None = None


LogoutCallback = Callable[[str], Awaitable[None] | None]


class AuthManager:
    """Owns the authenticated state: token, user snapshot, permissions and the inactivity monitor.

    ``logout`` is the single teardown path. Whatever triggered it (the user,
    an inactivity timeout, a failed restore), the remote call is best effort
    and the local cleanup always runs.
    """

    def __init__(
        self,
        api: ApiClient,
        storage: SessionStorage,
        permissions: PermissionStore,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        security_level: SecurityLevel = SecurityLevel.MEDIUM,
        poll_interval: float = 60.0,
        debounce: float = 0.3,
    ) -> None:
        self.api = api
        self.storage = storage
        self.permissions = permissions
        self.notifier = notifier or Notifier()
        self.service = AuthService(api)
        self.monitor = SessionMonitor(
            storage,
            self.logout,
            notifier=self.notifier,
            clock=clock,
            poll_interval=poll_interval,
            debounce=debounce,
            security_level=security_level,
        )
        self.user: AuthUser | None = None
        self.expires_at: float | None = None
        self._clock = clock
        self._cache_clearers: list[Callable[[], None]] = []
        self._logout_callbacks: list[LogoutCallback] = []
        self._logging_out = False

    @property
    def is_authenticated(self) -> bool:
        return self.monitor.session.is_authenticated

    def require_authenticated(self) -> AuthUser:
        if not self.is_authenticated or self.user is None:
            raise NotAuthenticatedError("Log in first")
        return self.user

    def register_cache(self, clear: Callable[[], None]) -> None:
        self._cache_clearers.append(clear)

    def on_logged_out(self, callback: LogoutCallback) -> Callable[[], None]:
        self._logout_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._logout_callbacks:
                self._logout_callbacks.remove(callback)

        return unsubscribe

    def _store_token(self, data: Mapping[str, Any]) -> None:
        token = data.get("token")
        if not token:
            raise ApiError("Authentication response did not include a token")
        expires_in = data.get("expiresIn")
        self.expires_at = self._clock() + float(expires_in) if expires_in else None
        self.api.set_token(token)
        self.storage.set(AUTH_TOKEN, token)
        self.storage.set(TOKEN_EXPIRES_AT, self.expires_at)

    def _mark_authenticated(self, user: AuthUser | None) -> None:
        self.user = user
        self.monitor.session.is_authenticated = True
        console_user_var.set(user.username if user else None)

    async def login(self, credentials: LoginCredentials | Mapping[str, Any]) -> AuthUser:
        if not isinstance(credentials, LoginCredentials):
            try:
                credentials = LoginCredentials.model_validate(dict(credentials))
            except ValidationError as exc:
                raise EntityValidationError([str(err["msg"]) for err in exc.errors()]) from exc
        if not credentials.username.strip() or not credentials.password:
            raise EntityValidationError(["username and password are required"])

        try:
            data = await self.service.login(credentials)
            self._store_token(data)
            user = await self.service.me()
            self.storage.save_user(user)
            await self.permissions.load(self.api)
        except ApiError as exc:
            logger.warning("Login for %s failed: %s", credentials.username, exc)
            self.notifier.error("Login failed", str(exc))
            self._clear_local()
            raise

        self._mark_authenticated(user)
        self.monitor.touch()
        logger.info("Logged in as %s", user.username)
        self.notifier.success("Logged in", f"Welcome, {user.full_name or user.username}")
        return user

    async def refresh(self) -> SessionInfo:
        self.require_authenticated()
        data = await self.service.refresh()
        self._store_token(data)
        logger.info("Token refreshed; expires in %s s", data.get("expiresIn"))
        return self.session_info()

    async def restore(self) -> bool:
        """Resume a persisted session; returns whether one was restored."""
        token = self.storage.get(AUTH_TOKEN)
        expires_at = self.storage.get(TOKEN_EXPIRES_AT)
        if not token:
            return False
        if isinstance(expires_at, (int, float)) and expires_at <= self._clock():
            logger.info("Stored token has expired; discarding it")
            self.storage.clear()
            return False

        self.api.set_token(token)
        self.expires_at = float(expires_at) if isinstance(expires_at, (int, float)) else None
        self.monitor.restore()
        self._mark_authenticated(self.storage.load_user())
        try:
            await self.permissions.load(self.api)
        except ApiError:
            await self.logout("restore_failed")
            return False
        # An idle gap longer than the threshold ends the session right away.
        if await self.monitor.check():
            return False
        logger.info("Restored session for %s", self.user.username if self.user else "unknown user")
        return True

    async def logout(self, reason: str = USER_LOGOUT, all_devices: bool = False) -> None:
        if self._logging_out:
            return
        self._logging_out = True
        try:
            try:
                if self.api.token:
                    await self.service.logout(all_devices)
            except Exception as exc:
                logger.warning("Remote logout failed (%s); clearing the local session anyway", exc)
            finally:
                self._clear_local()
            get_console_metrics().session_logouts.add(1, {"reason": reason})
            logger.info("Logged out: %s", reason)
            for callback in list(self._logout_callbacks):
                try:
                    result = callback(reason)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Logout subscriber failed")
        finally:
            self._logging_out = False

    def _clear_local(self) -> None:
        for clear in self._cache_clearers:
            clear()
        self.permissions.clear()
        self.api.set_token(None)
        self.monitor.discard_pending()
        self.storage.clear()
        self.user = None
        self.expires_at = None
        self.monitor.session.is_authenticated = False
        console_user_var.set(None)

    def session_info(self) -> SessionInfo:
        now = self._clock()
        time_to_expiry = self.expires_at - now if self.expires_at is not None else None
        is_expired = time_to_expiry is not None and time_to_expiry <= 0
        return SessionInfo(
            is_authenticated=self.is_authenticated,
            is_valid=self.is_authenticated and not is_expired,
            is_expired=is_expired,
            needs_refresh=(
                self.is_authenticated
                and time_to_expiry is not None
                and 0 < time_to_expiry <= REFRESH_WINDOW_SECONDS
            ),
            time_to_expiry=time_to_expiry,
            last_activity_at=self.monitor.session.last_activity_at,
            idle_seconds=self.monitor.idle_seconds(),
            security_level=self.monitor.security_level.value,
            username=self.user.username if self.user else None,
        )
