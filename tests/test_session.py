"""Tests for the portal session state machine."""

import asyncio

import pytest

from conftest import STATS_URL, wait_until
from partnerwatch.models.session import LoginResult, SessionState
from partnerwatch.session_manager.errors import (
    AlreadyInProgress,
    AuthCodeNeeded,
    AuthCodeRejected,
    LoginRejected,
    NetworkFailure,
    NoAuthCodeProvided,
    NotAuthenticated,
    PersistenceFailure,
)
from partnerwatch.session_manager.parser import parse_stats


def identity(html: str) -> str:
    return html


class TestLogin:
    @pytest.mark.asyncio
    async def test_valid_saved_cookies_skip_the_browser(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])

        result = await session.login()

        assert result is LoginResult.SUCCESS
        assert session.state is SessionState.LOGGED_IN
        assert session.is_authenticated()
        assert portal.browser_starts == 0

    @pytest.mark.asyncio
    async def test_missing_cookie_file_runs_interactive_login(self, session, portal, cookie_store):
        assert not cookie_store.path.exists()

        result = await session.login()

        assert result is LoginResult.SUCCESS
        assert portal.browser_starts == 1
        assert portal.browser_stops == 1
        saved = cookie_store.load()
        assert [c.value for c in saved] == ["live-token"]

    @pytest.mark.asyncio
    async def test_expired_cookies_fall_back_to_credentials(self, session, portal, cookie_store):
        stale = portal.session_cookie().model_copy(update={"value": "expired"})
        cookie_store.save([stale])

        result = await session.login()

        assert result is LoginResult.SUCCESS
        assert portal.probes == 2  # stale jar, then the fresh one
        assert cookie_store.load()[0].value == "live-token"

    @pytest.mark.asyncio
    async def test_browser_already_authenticated(self, session, portal):
        portal.browser_already_logged_in = True

        assert await session.login() is LoginResult.SUCCESS
        assert session.is_authenticated()

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, session, portal):
        portal.password = "something-else"

        with pytest.raises(LoginRejected):
            await session.login()

        assert session.state is SessionState.LOGGED_OUT
        assert portal.browser_stops == 1
        assert not session.login_in_progress

    @pytest.mark.asyncio
    async def test_new_cookies_that_fail_the_probe_are_not_trusted(self, session, portal, cookie_store):
        portal.browser_already_logged_in = True
        original_cookie = portal.session_cookie

        def wrong_cookie():
            return original_cookie().model_copy(update={"value": "not-accepted"})

        portal.session_cookie = wrong_cookie

        with pytest.raises(NotAuthenticated):
            await session.login()
        assert session.state is SessionState.LOGGED_OUT
        assert not cookie_store.path.exists()

    @pytest.mark.asyncio
    async def test_corrupt_cookie_file_is_reported_and_ignored(self, session, cookie_store):
        cookie_store.path.write_text("{not json")

        assert await session.login() is LoginResult.SUCCESS
        assert "not a valid cookie list" in session.last_error

    @pytest.mark.asyncio
    async def test_cookie_save_failure_keeps_the_login(self, session, portal, cookie_store, monkeypatch):
        def broken_save(cookies):
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(cookie_store, "save", broken_save)

        assert await session.login() is LoginResult.SUCCESS
        assert session.state is SessionState.LOGGED_IN
        assert session.last_error == "disk full"
        assert [c.value for c in session.cookies] == ["live-token"]

    @pytest.mark.asyncio
    async def test_relogin_reuses_unsaved_cookies(self, session, portal, cookie_store, monkeypatch):
        def broken_save(cookies):
            raise PersistenceFailure("disk full")

        monkeypatch.setattr(cookie_store, "save", broken_save)
        await session.login()

        assert await session.login() is LoginResult.SUCCESS
        assert portal.browser_starts == 1
        assert session.is_authenticated()

    @pytest.mark.asyncio
    async def test_relogin_falls_back_to_saved_file(self, session, portal, cookie_store):
        await session.login()
        portal.token = "rotated"
        cookie_store.save([portal.session_cookie()])

        assert await session.login() is LoginResult.SUCCESS
        assert portal.browser_starts == 1
        assert [c.value for c in session.cookies] == ["rotated"]

    @pytest.mark.asyncio
    async def test_network_failure_during_probe_propagates(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        portal.read_error = NetworkFailure("connection reset")

        with pytest.raises(NetworkFailure):
            await session.login()
        assert session.state is SessionState.LOGGED_OUT
        assert portal.browser_starts == 0


class TestAuthCode:
    @pytest.mark.asyncio
    async def test_second_factor_flow(self, session, portal, cookie_store):
        portal.require_auth_code = True

        result = await session.login()
        assert result is LoginResult.AUTH_CODE_NEEDED
        assert session.state is SessionState.AWAITING_AUTH_CODE
        assert portal.browser_stops == 0

        await session.supply_auth_code("  F7K2Q\n")

        assert session.state is SessionState.LOGGED_IN
        assert portal.browser_stops == 1
        assert len(cookie_store.load()) == 1

    @pytest.mark.asyncio
    async def test_rejected_code_keeps_login_pending(self, session, portal):
        portal.require_auth_code = True
        await session.login()

        with pytest.raises(AuthCodeRejected):
            await session.supply_auth_code("WRONG")
        assert session.state is SessionState.AWAITING_AUTH_CODE

        await session.supply_auth_code("F7K2Q")
        assert session.state is SessionState.LOGGED_IN

    @pytest.mark.parametrize("code", ["", "   ", "12 34", "ab-cd"])
    @pytest.mark.asyncio
    async def test_malformed_code(self, session, portal, code):
        portal.require_auth_code = True
        await session.login()

        with pytest.raises(AuthCodeRejected):
            await session.supply_auth_code(code)
        assert session.state is SessionState.AWAITING_AUTH_CODE
        await session.close()

    @pytest.mark.asyncio
    async def test_code_without_pending_login(self, session):
        with pytest.raises(AuthCodeRejected):
            await session.supply_auth_code("F7K2Q")

    @pytest.mark.asyncio
    async def test_login_while_awaiting_code_is_rejected(self, session, portal):
        portal.require_auth_code = True
        await session.login()

        with pytest.raises(AlreadyInProgress):
            await session.login()
        await session.close()

    @pytest.mark.asyncio
    async def test_wait_resolves_when_code_is_supplied(self, session, portal):
        portal.require_auth_code = True
        pending = asyncio.create_task(session.login_and_wait())
        await wait_until(lambda: session.state is SessionState.AWAITING_AUTH_CODE)

        await session.supply_auth_code("F7K2Q")

        assert await asyncio.wait_for(pending, 1) is LoginResult.SUCCESS

    @pytest.mark.asyncio
    async def test_timeout_abandons_login(self, make_session, portal):
        session = make_session(auth_code_timeout=0.05)
        portal.require_auth_code = True

        with pytest.raises(NoAuthCodeProvided):
            await asyncio.wait_for(session.login_and_wait(), 1)

        assert session.state is SessionState.LOGGED_OUT
        assert not session.login_in_progress
        assert portal.browser_stops == 1
        assert not session.locked()

        # A fresh attempt is possible after the timeout
        assert await session.login() is LoginResult.AUTH_CODE_NEEDED
        await session.close()

    @pytest.mark.asyncio
    async def test_logout_aborts_pending_wait(self, session, portal):
        portal.require_auth_code = True
        await session.login()
        waiter = asyncio.create_task(session.wait_for_auth_code())
        await asyncio.sleep(0)

        await session.logout()

        with pytest.raises(NoAuthCodeProvided):
            await asyncio.wait_for(waiter, 1)
        assert session.state is SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_close_aborts_pending_wait(self, session, portal):
        portal.require_auth_code = True
        await session.login()
        waiter = asyncio.create_task(session.wait_for_auth_code())
        await asyncio.sleep(0)

        await session.close()

        with pytest.raises(NoAuthCodeProvided):
            await asyncio.wait_for(waiter, 1)
        assert portal.browser_stops == 1


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_logs_in_transparently(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])

        snapshot = await session.fetch(STATS_URL, parse_stats)

        assert snapshot.wishlist_count == 100
        assert session.is_authenticated()

    @pytest.mark.asyncio
    async def test_fetch_twice_gives_equal_snapshots(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])

        first = await session.fetch(STATS_URL, parse_stats)
        second = await session.fetch(STATS_URL, parse_stats)

        assert first == second

    @pytest.mark.asyncio
    async def test_fetch_surfaces_auth_code_needed(self, session, portal):
        portal.require_auth_code = True

        with pytest.raises(AuthCodeNeeded):
            await session.fetch(STATS_URL, parse_stats)
        assert session.state is SessionState.AWAITING_AUTH_CODE

        with pytest.raises(AuthCodeNeeded):
            await session.fetch(STATS_URL, parse_stats)
        await session.close()

    @pytest.mark.asyncio
    async def test_expired_session_is_marked_logged_out(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        await session.login()
        portal.token = "rotated"

        with pytest.raises(NotAuthenticated):
            await session.fetch(STATS_URL, identity)
        assert session.state is SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_login_wall_seen_by_extractor_logs_out(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        portal.pages[STATS_URL] = '<form id="loginForm"><input id="username"></form>'

        with pytest.raises(NotAuthenticated):
            await session.fetch(STATS_URL, parse_stats)
        assert session.state is SessionState.LOGGED_OUT


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_login_waits_for_inflight_fetch(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        await session.login()
        portal.reads = 0
        portal.read_gate = asyncio.Event()

        fetch = asyncio.create_task(session.fetch(STATS_URL, parse_stats))
        await wait_until(lambda: portal.reads == 1)
        login = asyncio.create_task(session.login())
        await asyncio.sleep(0.01)

        assert session.locked()
        assert not login.done()
        assert session.state is SessionState.LOGGED_IN

        portal.read_gate.set()
        snapshot = await asyncio.wait_for(fetch, 1)
        assert await asyncio.wait_for(login, 1) is LoginResult.SUCCESS
        assert snapshot.wishlist_count == 100
        assert not session.locked()

    @pytest.mark.asyncio
    async def test_concurrent_login_is_rejected(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        portal.read_gate = asyncio.Event()

        first = asyncio.create_task(session.login())
        await wait_until(lambda: portal.reads == 1)

        with pytest.raises(AlreadyInProgress):
            await session.login()

        portal.read_gate.set()
        assert await asyncio.wait_for(first, 1) is LoginResult.SUCCESS

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        await session.login()
        portal.read_error = NetworkFailure("boom")

        with pytest.raises(NetworkFailure):
            await session.fetch(STATS_URL, parse_stats)
        assert not session.locked()


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_clears_local_and_remote_session(self, session, portal, cookie_store):
        cookie_store.save([portal.session_cookie()])
        await session.login()

        await session.logout()

        assert session.state is SessionState.LOGGED_OUT
        assert session.cookies == []
        assert not cookie_store.path.exists()
        assert portal.remote_logouts == 1

    @pytest.mark.asyncio
    async def test_logout_when_logged_out(self, session, portal):
        await session.logout()

        assert session.state is SessionState.LOGGED_OUT
        assert portal.remote_logouts == 0
