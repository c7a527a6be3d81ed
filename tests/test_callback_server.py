"""Tests for the OAuth callback listener."""

import asyncio
import time

import httpx
import pytest

from mcp_oauth_bridge.callback_server import (
    AUTH_COMPLETED,
    AUTH_IN_PROGRESS,
    AUTH_SUCCESS_PAGE,
    CallbackServer,
)
from mcp_oauth_bridge.context import AuthSession
from mcp_oauth_bridge.errors import PortBindError
from mcp_oauth_bridge.ports import find_available_port


def make_client(server: CallbackServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=server.app),
        base_url="http://testserver",
    )


class TestRedirectEndpoint:
    """Tests for the OAuth redirect route."""

    @pytest.mark.asyncio
    async def test_missing_code_returns_400(self):
        """Test that a redirect without code is rejected."""
        session = AuthSession()
        server = CallbackServer(session, port=0)

        async with make_client(server) as client:
            response = await client.get("/callback")

        assert response.status_code == 400
        assert "No authorization code received" in response.text
        assert session.is_completed is False

    @pytest.mark.asyncio
    async def test_code_returns_200_and_resolves_waiter(self):
        """Test that a valid redirect stores the code and wakes waiters."""
        session = AuthSession()
        server = CallbackServer(session, port=0)
        waiter = asyncio.create_task(session.wait_for_auth_code())
        await asyncio.sleep(0)

        async with make_client(server) as client:
            response = await client.get("/callback", params={"code": "ABC", "state": "xyz"})

        assert response.status_code == 200
        assert response.text == AUTH_SUCCESS_PAGE
        assert await asyncio.wait_for(waiter, 1) == "ABC"
        assert session.state == "xyz"

        # Resolved once, later calls answer immediately
        assert await session.wait_for_auth_code() == "ABC"
        assert session.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_repeated_redirect_keeps_first_code(self):
        """Test that the first code wins."""
        session = AuthSession()
        server = CallbackServer(session, port=0)

        async with make_client(server) as client:
            await client.get("/callback", params={"code": "first"})
            response = await client.get("/callback", params={"code": "second"})

        assert response.status_code == 200
        assert session.auth_code == "first"

    @pytest.mark.asyncio
    async def test_oauth_error_returns_400(self):
        """Test that an OAuth error redirect is rejected without a transition."""
        session = AuthSession()
        server = CallbackServer(session, port=0)

        async with make_client(server) as client:
            response = await client.get(
                "/callback",
                params={"error": "access_denied", "error_description": "User denied"},
            )

        assert response.status_code == 400
        assert "access_denied" in response.text
        assert session.is_completed is False

    @pytest.mark.asyncio
    async def test_custom_path(self):
        """Test that the redirect route follows the configured path."""
        session = AuthSession()
        server = CallbackServer(session, port=0, path="/oauth/callback")

        async with make_client(server) as client:
            response = await client.get("/oauth/callback", params={"code": "ABC"})

        assert response.status_code == 200
        assert session.auth_code == "ABC"

    def test_redirect_url(self):
        """Test the redirect URI advertised to the authorization server."""
        server = CallbackServer(AuthSession(), port=4321)
        assert server.redirect_url == "http://localhost:4321/callback"


class TestWaitForAuthEndpoint:
    """Tests for the long-poll route."""

    @pytest.mark.asyncio
    async def test_completed_returns_200_without_code(self):
        """Test that completion is reported without leaking the code."""
        session = AuthSession()
        session.set_auth_code("SECRET-CODE")
        server = CallbackServer(session, port=0)

        async with make_client(server) as client:
            response = await client.get("/wait-for-auth")

        assert response.status_code == 200
        assert response.text == AUTH_COMPLETED
        assert "SECRET-CODE" not in response.text

    @pytest.mark.asyncio
    async def test_poll_false_returns_202_immediately(self):
        """Test that poll=false never waits."""
        server = CallbackServer(AuthSession(), port=0, long_poll_timeout=30)

        async with make_client(server) as client:
            started = time.monotonic()
            response = await client.get("/wait-for-auth", params={"poll": "false"})

        assert response.status_code == 202
        assert response.text == AUTH_IN_PROGRESS
        assert time.monotonic() - started < 1

    @pytest.mark.asyncio
    async def test_long_poll_timeout_returns_202(self):
        """Test that a long poll without completion ends with 202."""
        server = CallbackServer(AuthSession(), port=0, long_poll_timeout=0.1)

        async with make_client(server) as client:
            started = time.monotonic()
            response = await client.get("/wait-for-auth")

        assert response.status_code == 202
        assert time.monotonic() - started >= 0.09

    @pytest.mark.asyncio
    async def test_long_poll_returns_200_on_completion(self):
        """Test that a held request answers as soon as the code arrives."""
        session = AuthSession()
        server = CallbackServer(session, port=0, long_poll_timeout=10)

        async with make_client(server) as client:

            async def deliver_code() -> httpx.Response:
                await asyncio.sleep(0.1)
                return await client.get("/callback", params={"code": "ABC"})

            started = time.monotonic()
            poll, redirect = await asyncio.gather(
                client.get("/wait-for-auth"), deliver_code()
            )
            elapsed = time.monotonic() - started

        assert redirect.status_code == 200
        assert poll.status_code == 200
        assert poll.text == AUTH_COMPLETED
        assert elapsed < 5


class TestServerLifecycle:
    """Tests for starting and stopping the listener."""

    @pytest.mark.asyncio
    async def test_start_serve_stop(self):
        """Test that the listener serves real HTTP and stops cleanly."""
        session = AuthSession()
        port = find_available_port()
        server = CallbackServer(session, port=port)

        await server.start()
        try:
            assert server.is_running
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"http://127.0.0.1:{port}/callback", params={"code": "LIVE"}
                )
            assert response.status_code == 200
            assert session.auth_code == "LIVE"
        finally:
            await server.stop()

        assert server.is_running is False
        # Stopping twice is harmless
        await server.stop()

    @pytest.mark.asyncio
    async def test_start_on_busy_port_raises(self):
        """Test that a port already bound by another listener is refused."""
        first = CallbackServer(AuthSession(), port=find_available_port())
        await first.start()
        try:
            second = CallbackServer(AuthSession(), port=first.port)
            # SO_REUSEADDR does not allow two listeners on Linux
            with pytest.raises(PortBindError):
                await second.start()
        finally:
            await first.stop()
