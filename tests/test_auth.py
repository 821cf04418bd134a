"""
Tests for AuthManager login, restore and logout teardown.
"""
from __future__ import annotations

import pytest

from factory_console.errors import ApiError, EntityValidationError, NotAuthenticatedError
from factory_console.session import SESSION_TIMEOUT
from factory_console.storage import AUTH_TOKEN, LAST_ACTIVITY, USER_SNAPSHOT

CREDENTIALS = {"username": "alice", "password": "s3cret"}


class TestLogin:
    """Successful and failed logins."""

    @pytest.mark.asyncio
    async def test_login_loads_user_and_permissions(self, console, login_routes):
        user = await console.auth.login(CREDENTIALS)

        assert user.username == "alice"
        assert console.auth.is_authenticated
        assert console.permissions.is_ready
        assert console.permissions.has_permission("department.read")
        assert not console.permissions.has_permission("factory.delete")
        assert console.api.token == "tok-1"
        me = login_routes.calls("GET", "/auth/me")[0]
        assert me.headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_login_persists_encrypted_snapshot(self, console, login_routes):
        await console.auth.login(CREDENTIALS)

        raw = console.storage.get(USER_SNAPSHOT)
        assert "alice" not in raw
        assert console.storage.load_user().full_name == "Alice Nguyen"
        assert console.storage.get(AUTH_TOKEN) == "tok-1"
        assert console.storage.get(LAST_ACTIVITY) is not None

    @pytest.mark.asyncio
    async def test_login_sends_credentials(self, console, login_routes):
        await console.auth.login(CREDENTIALS)

        body = login_routes.json_body(login_routes.calls("POST", "/auth/login")[0])
        assert body == {"username": "alice", "password": "s3cret", "rememberMe": False}

    @pytest.mark.asyncio
    async def test_rejected_login_clears_state_and_notifies(self, console, backend):
        backend.add("POST", "/auth/login", status=401, body={"message": "Invalid credentials"})

        with pytest.raises(ApiError, match="Invalid credentials"):
            await console.auth.login(CREDENTIALS)

        assert not console.auth.is_authenticated
        assert console.api.token is None
        assert console.notifier.history[-1].title == "Login failed"

    @pytest.mark.asyncio
    async def test_blank_credentials_are_rejected_locally(self, console, backend):
        with pytest.raises(EntityValidationError):
            await console.auth.login({"username": " ", "password": ""})

        assert backend.requests == []


class TestLogout:
    """Teardown always runs, whatever the remote call does."""

    @pytest.mark.asyncio
    async def test_logout_clears_caches_permissions_and_storage(self, console, login_routes):
        login_routes.add("GET", "/departments", [{"id": "d1", "code": "HQ", "name": "Head Office"}])
        await console.auth.login(CREDENTIALS)
        await console.context("department").list()
        reasons = []
        console.auth.on_logged_out(reasons.append)

        await console.auth.logout()

        assert reasons == ["user_logout"]
        assert not console.auth.is_authenticated
        assert not console.permissions.is_ready
        assert console.departments.cache.stats().entries == 0
        assert console.storage.get(AUTH_TOKEN) is None
        assert console.storage.get(USER_SNAPSHOT) is None
        assert console.api.token is None
        assert len(login_routes.calls("POST", "/auth/logout")) == 1

    @pytest.mark.asyncio
    async def test_remote_failure_does_not_block_local_cleanup(self, console, login_routes):
        login_routes.add("POST", "/auth/logout", status=500, body={})
        await console.auth.login(CREDENTIALS)

        await console.auth.logout()

        assert not console.auth.is_authenticated
        assert console.storage.get(AUTH_TOKEN) is None

    @pytest.mark.asyncio
    async def test_unexpected_remote_error_still_clears_session(self, console, login_routes):
        def explode(request):
            raise RuntimeError("proxy dropped the connection")

        login_routes.add_handler("POST", "/auth/logout", explode)
        await console.auth.login(CREDENTIALS)
        reasons = []
        console.auth.on_logged_out(reasons.append)

        await console.auth.logout()

        assert reasons == ["user_logout"]
        assert not console.auth.is_authenticated
        assert console.api.token is None
        assert console.storage.get(AUTH_TOKEN) is None
        assert not console.permissions.is_ready

    @pytest.mark.asyncio
    async def test_rejected_logout_with_list_message_clears_session(self, console, login_routes):
        login_routes.add("POST", "/auth/logout", body={"success": False, "message": ["token revoked"]})
        await console.auth.login(CREDENTIALS)

        await console.auth.logout()

        assert not console.auth.is_authenticated
        assert console.api.token is None

    @pytest.mark.asyncio
    async def test_logout_all_devices(self, console, login_routes):
        login_routes.add("POST", "/auth/logout-all", None)
        await console.auth.login(CREDENTIALS)

        await console.auth.logout(all_devices=True)

        assert len(login_routes.calls("POST", "/auth/logout-all")) == 1
        assert login_routes.calls("POST", "/auth/logout") == []

    @pytest.mark.asyncio
    async def test_inactivity_timeout_logs_out(self, console, login_routes, clock):
        await console.auth.login(CREDENTIALS)
        console.auth.monitor.set_security_level("STRICT")
        reasons = []
        console.auth.on_logged_out(reasons.append)
        clock.advance(16 * 60)

        assert await console.auth.monitor.check() is True

        assert reasons == [SESSION_TIMEOUT]
        assert not console.auth.is_authenticated
        assert not console.permissions.is_ready

    @pytest.mark.asyncio
    async def test_async_logout_subscriber_is_awaited(self, console, login_routes):
        await console.auth.login(CREDENTIALS)
        seen = []

        async def redirect(reason):
            seen.append(reason)

        console.auth.on_logged_out(redirect)
        await console.auth.logout("manual")

        assert seen == ["manual"]


class TestSessionInfo:
    """Token expiry bookkeeping and refresh."""

    @pytest.mark.asyncio
    async def test_session_info_tracks_expiry(self, console, login_routes, clock):
        await console.auth.login(CREDENTIALS)

        info = console.auth.session_info()
        assert info.is_valid
        assert info.time_to_expiry == pytest.approx(7200)
        assert not info.needs_refresh

        clock.advance(6600)
        assert console.auth.session_info().needs_refresh

        clock.advance(700)
        expired = console.auth.session_info()
        assert expired.is_expired
        assert not expired.is_valid

    @pytest.mark.asyncio
    async def test_refresh_replaces_token(self, console, login_routes, clock):
        login_routes.add("POST", "/auth/refresh", {"token": "tok-2", "expiresIn": 3600})
        await console.auth.login(CREDENTIALS)

        info = await console.auth.refresh()

        assert console.api.token == "tok-2"
        assert info.time_to_expiry == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_refresh_requires_login(self, console):
        with pytest.raises(NotAuthenticatedError):
            await console.auth.refresh()


class TestRestore:
    """Boot-time session resume from storage."""

    @pytest.mark.asyncio
    async def test_restore_resumes_stored_session(self, console, login_routes):
        await console.auth.login(CREDENTIALS)
        console.auth.monitor.session.is_authenticated = False
        console.permissions.clear()
        console.api.set_token(None)

        assert await console.auth.restore() is True

        assert console.auth.is_authenticated
        assert console.api.token == "tok-1"
        assert console.auth.user.username == "alice"
        assert console.permissions.is_ready

    @pytest.mark.asyncio
    async def test_restore_without_token(self, console, backend):
        assert await console.auth.restore() is False
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_restore_with_expired_token(self, console, clock):
        console.storage.set(AUTH_TOKEN, "old")
        console.storage.set("token_expires_at", clock.now - 1)

        assert await console.auth.restore() is False
        assert console.storage.get(AUTH_TOKEN) is None

    @pytest.mark.asyncio
    async def test_restore_after_long_idle_logs_out(self, console, login_routes, clock):
        await console.auth.login(CREDENTIALS)
        console.auth.monitor.session.is_authenticated = False
        clock.advance(61 * 60)

        assert await console.auth.restore() is False
        assert not console.auth.is_authenticated
