"""Connection to the remote server, with re-authorization on Unauthorized.

Sequence:
    1. Build outbound headers (sensitive values encrypted, secret stripped)
    2. Start a remote transport
    3. On Unauthorized: wait for the authorization code, complete the
       handshake, then start a *new* transport (a transport that failed its
       handshake is never reused)
    4. Any other failure is fatal for the attempt
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable

from .errors import is_unauthorized
from .headers import DEFAULT_KEYS_FOR_ENCRYPTION, DEFAULT_SECRET_KEY, parse_headers
from .logging_config import get_logger
from .transport import RemoteTransport, SSEClientTransport

if TYPE_CHECKING:
    from .crypto import HeaderCipher
    from .oauth.provider import AuthProvider

logger = get_logger("connection")

TransportFactory = Callable[[str, dict[str, str], "AuthProvider"], RemoteTransport]
WaitForAuthCode = Callable[[], Awaitable[str]]


async def connect_to_remote_server(
    server_url: str,
    auth_provider: "AuthProvider",
    wait_for_auth_code: WaitForAuthCode,
    skip_browser_auth: bool = False,
    headers: str = "",
    transport_factory: TransportFactory = SSEClientTransport,
    cipher: "HeaderCipher | None" = None,
) -> RemoteTransport:
    """Connect to the remote server, authorizing once if required.

    Args:
        server_url: Remote server URL
        auth_provider: OAuth client used by the transport
        wait_for_auth_code: Resolves with the authorization code
        skip_browser_auth: True when another instance runs the browser flow
        headers: Raw ``--header`` string
        transport_factory: Builds a transport from (url, headers, provider)
        cipher: Cipher for sensitive header values

    Returns:
        A started remote transport

    Raises:
        Exception: The first start failure, unchanged, if it is not an
            authorization failure; otherwise whatever the post-authorization
            attempt raised
    """
    logger.info("Connecting to remote server: %s", server_url)

    credentials = parse_headers(
        headers, DEFAULT_KEYS_FOR_ENCRYPTION, DEFAULT_SECRET_KEY, cipher=cipher
    )
    logger.debug("Outbound header names: %s", sorted(credentials))

    transport = transport_factory(server_url, credentials, auth_provider)

    try:
        await transport.start()
        logger.info("Connected to remote server")
        return transport
    except Exception as e:
        if not is_unauthorized(e):
            logger.error("Connection error: %s", e)
            raise
        auth_error = e

    if skip_browser_auth:
        logger.info("Authentication required but skipping browser auth - using shared auth")
    else:
        logger.info("Authentication required. Waiting for authorization...")
    logger.debug("Unauthorized start: %s", auth_error)

    code = await wait_for_auth_code()

    try:
        logger.info("Completing authorization...")
        await transport.finish_auth(code)

        new_transport = transport_factory(server_url, credentials, auth_provider)
        await new_transport.start()
    except Exception as e:
        logger.error("Authorization error: %s", e)
        raise

    logger.info("Connected to remote server after authentication")
    return new_transport
