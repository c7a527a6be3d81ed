"""Tests for the OAuth client adapter and token storage."""

from unittest.mock import AsyncMock, patch

import pytest
from cryptography.fernet import Fernet

from mcp_oauth_bridge.context import AuthSession
from mcp_oauth_bridge.errors import UnauthorizedError
from mcp_oauth_bridge.oauth.provider import BrowserOAuth
from mcp_oauth_bridge.oauth.storage import (
    clear_storage,
    create_storage,
    get_storage_directory,
)


def make_provider(session: AuthSession, skip_browser_auth: bool = False) -> BrowserOAuth:
    from key_value.aio.stores.memory import MemoryStore

    return BrowserOAuth(
        "https://example.com/sse",
        session,
        callback_port=4321,
        token_storage=MemoryStore(),
        skip_browser_auth=skip_browser_auth,
    )


class TestCreateStorage:
    """Tests for create_storage."""

    def test_memory_by_default(self):
        """Test that no directory means an in-memory store."""
        from key_value.aio.stores.memory import MemoryStore

        assert isinstance(create_storage(), MemoryStore)

    def test_disk_store(self, tmp_path):
        """Test that a directory gives a disk store."""
        from key_value.aio.stores.disk import DiskStore

        assert isinstance(create_storage(tmp_path / "tokens"), DiskStore)

    def test_fernet_key(self):
        """Test encryption with a ready Fernet key."""
        from key_value.aio.wrappers.encryption.fernet import FernetEncryptionWrapper

        storage = create_storage(encryption_key=Fernet.generate_key().decode())
        assert isinstance(storage, FernetEncryptionWrapper)

    def test_source_material_key(self):
        """Test encryption with an arbitrary passphrase."""
        from key_value.aio.wrappers.encryption.fernet import FernetEncryptionWrapper

        storage = create_storage(encryption_key="not a fernet key")
        assert isinstance(storage, FernetEncryptionWrapper)

    def test_storage_directory(self, tmp_path):
        """Test the per-server directory layout."""
        assert get_storage_directory(tmp_path, "abc") == tmp_path / "abc"

    def test_clear_storage(self, tmp_path):
        """Test that clearing removes the directory."""
        directory = tmp_path / "abc"
        directory.mkdir()
        (directory / "tokens.db").write_text("x")

        assert clear_storage(directory) is True
        assert not directory.exists()
        assert clear_storage(directory) is False


class TestBrowserOAuth:
    """Tests for BrowserOAuth."""

    def test_redirect_uri_uses_callback_port(self):
        """Test that the redirect URI points at the bridge listener."""
        provider = make_provider(AuthSession())

        assert provider.redirect_port == 4321
        redirect_uris = [str(uri) for uri in provider.context.client_metadata.redirect_uris]
        assert redirect_uris == ["http://localhost:4321/callback"]

    def test_auth_is_self(self):
        """Test that the provider is the httpx.Auth for requests."""
        provider = make_provider(AuthSession())
        assert provider.auth is provider

    @pytest.mark.asyncio
    async def test_callback_handler_returns_session_code(self):
        """Test that the code and state come from the session."""
        session = AuthSession()
        session.set_auth_code("ABC", "xyz")

        assert await make_provider(session).callback_handler() == ("ABC", "xyz")

    @pytest.mark.asyncio
    async def test_callback_handler_shared_auth_raises(self):
        """Test that shared-auth mode reports Unauthorized instead of waiting."""
        provider = make_provider(AuthSession(), skip_browser_auth=True)

        with pytest.raises(UnauthorizedError):
            await provider.callback_handler()

    @pytest.mark.asyncio
    async def test_redirect_handler_opens_browser(self):
        """Test that the primary instance delegates to the browser flow."""
        provider = make_provider(AuthSession())

        with patch(
            "fastmcp.client.auth.OAuth.redirect_handler", new_callable=AsyncMock
        ) as parent:
            await provider.redirect_handler("https://auth.example.com/authorize")

        parent.assert_awaited_once_with("https://auth.example.com/authorize")

    @pytest.mark.asyncio
    async def test_redirect_handler_shared_auth_skips_browser(self):
        """Test that a secondary instance never opens the browser."""
        provider = make_provider(AuthSession(), skip_browser_auth=True)

        with patch(
            "fastmcp.client.auth.OAuth.redirect_handler", new_callable=AsyncMock
        ) as parent:
            await provider.redirect_handler("https://auth.example.com/authorize")

        parent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_finish_auth_reloads_tokens(self):
        """Test that finish_auth forces stored tokens to be reloaded."""
        session = AuthSession()
        provider = make_provider(session)
        provider._initialized = True

        await provider.finish_auth("ABC")

        assert provider._initialized is False
        assert session.auth_code == "ABC"

    @pytest.mark.asyncio
    async def test_finish_auth_shared_code_not_recorded(self):
        """Test that the empty shared-auth code is not stored."""
        session = AuthSession()
        await make_provider(session, skip_browser_auth=True).finish_auth("")
        assert session.auth_code is None
