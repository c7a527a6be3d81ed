"""OAuth client adapter for remote MCP servers.

The bridge does not issue or persist tokens itself. It drives an external
OAuth client (fastmcp's ``OAuth`` provider, built on the ``mcp`` SDK) and
feeds it the authorization code captured by the bridge's own callback
listener, so several bridge instances can share one listener and one
token store.

Flow:
    remote 401 -> OAuth client discovers + registers
               -> redirect_handler: open browser (primary instance)
               -> callback_handler: await AuthSession code from CallbackServer
               -> token exchange, tokens saved to the shared store

In shared-auth mode (another instance owns the browser flow) the callback
handler raises ``UnauthorizedError`` instead of waiting on a listener that
does not exist. The connection orchestrator then waits for the other
instance and calls ``finish_auth``, which reloads the shared tokens.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx
from fastmcp.client.auth import OAuth

from ..errors import UnauthorizedError
from ..logging_config import get_logger

if TYPE_CHECKING:
    from key_value.aio.protocols.key_value import AsyncKeyValue

    from ..context import AuthSession

logger = get_logger("oauth.provider")

DEFAULT_CLIENT_NAME = "MCP OAuth Bridge"


class AuthProvider(Protocol):
    """What the remote transport needs from an OAuth client."""

    @property
    def auth(self) -> httpx.Auth | None: ...

    async def finish_auth(self, authorization_code: str) -> None: ...


class BrowserOAuth(OAuth):
    """fastmcp OAuth provider wired to the bridge's callback listener.

    Example:
        >>> session = AuthSession()
        >>> provider = BrowserOAuth(
        ...     "https://example.com/sse", session, callback_port=3334,
        ...     token_storage=create_storage(directory),
        ... )
        >>> transport = SSEClientTransport(url, headers, provider)
    """

    def __init__(
        self,
        server_url: str,
        session: "AuthSession",
        callback_port: int,
        token_storage: "AsyncKeyValue | None" = None,
        skip_browser_auth: bool = False,
        client_name: str = DEFAULT_CLIENT_NAME,
        scopes: str | list[str] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            server_url: Remote MCP server URL
            session: Session the callback listener writes the code into
            callback_port: Port of the callback listener (redirect URI)
            token_storage: Shared token store
            skip_browser_auth: True when another instance runs the browser flow
            client_name: Name used during dynamic client registration
            scopes: OAuth scopes to request
        """
        self.session = session
        self.skip_browser_auth = skip_browser_auth
        super().__init__(
            mcp_url=server_url,
            scopes=scopes,
            client_name=client_name,
            token_storage=token_storage,
            callback_port=callback_port,
        )

    @property
    def auth(self) -> httpx.Auth:
        """The provider is itself the ``httpx.Auth`` for remote requests."""
        return self

    async def redirect_handler(self, authorization_url: str) -> None:
        """Open the browser, unless another instance handles authorization."""
        if self.skip_browser_auth:
            logger.info("Authorization handled by another instance, not opening browser")
            return

        logger.info("Please authorize this client by visiting:\n%s", authorization_url)
        await super().redirect_handler(authorization_url)

    async def callback_handler(self) -> tuple[str, str | None]:
        """Return the (code, state) captured by the callback listener.

        Raises:
            UnauthorizedError: In shared-auth mode, where this process has
                no listener to receive the redirect
        """
        if self.skip_browser_auth:
            raise UnauthorizedError("Unauthorized: waiting for shared authentication")

        code = await self.session.wait_for_auth_code()
        return code, self.session.state

    async def finish_auth(self, authorization_code: str) -> None:
        """Make the next connection use the tokens the flow produced.

        The code itself is exchanged inside the OAuth client's flow (or by
        the instance owning the browser flow), so this only records it and
        forces stored tokens to be reloaded.
        """
        if authorization_code:
            self.session.set_auth_code(authorization_code, self.session.state)
        self._initialized = False
        logger.debug("OAuth provider will reload tokens from storage")
