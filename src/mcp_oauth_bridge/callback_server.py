"""Local HTTP listener for the OAuth redirect and long-poll coordination.

Routes:
    GET <callback path>?code=...&state=...
        OAuth redirect target. Stores the authorization code in the
        ``AuthSession`` (first write wins) and wakes every waiter.

    GET /wait-for-auth[?poll=false]
        Used by secondary bridge instances that share this instance's
        token storage. Answers 200 once the code has been received and 202
        while authorization is still in progress. Unless ``poll=false`` is
        given, the request is held open for up to ``long_poll_timeout``
        seconds waiting for completion. The code itself is never returned;
        secondary instances read tokens from the shared storage.

The listener runs on the loopback interface as an asyncio task for the
lifetime of the bridge process.
"""

from __future__ import annotations

import asyncio
import socket

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from .context import AuthSession
from .errors import MissingCodeError, PortBindError
from .logging_config import get_logger
from .ports import LOOPBACK_HOST

logger = get_logger("callback_server")

DEFAULT_CALLBACK_PATH = "/callback"
WAIT_FOR_AUTH_PATH = "/wait-for-auth"
LONG_POLL_TIMEOUT = 30.0

AUTH_COMPLETED = "Authentication completed"
AUTH_IN_PROGRESS = "Authentication in progress"
AUTH_SUCCESS_PAGE = (
    "Authorization successful! You may close this window and return to the CLI."
)

STARTUP_POLL_INTERVAL = 0.05
# Held long-poll requests are dropped after this many seconds on shutdown
SHUTDOWN_GRACE_PERIOD = 1


class CallbackServer:
    """OAuth callback listener bound to one ``AuthSession``.

    Example:
        >>> session = AuthSession()
        >>> server = CallbackServer(session, port=3334)
        >>> await server.start()
        >>> code = await session.wait_for_auth_code()
        >>> await server.stop()
    """

    def __init__(
        self,
        session: AuthSession,
        port: int,
        path: str = DEFAULT_CALLBACK_PATH,
        host: str = LOOPBACK_HOST,
        long_poll_timeout: float = LONG_POLL_TIMEOUT,
    ) -> None:
        """Initialize the callback server.

        Args:
            session: Session receiving the authorization code
            port: Port to listen on
            path: Path of the OAuth redirect route
            host: Interface to bind (loopback by default)
            long_poll_timeout: Seconds a /wait-for-auth request is held open
        """
        self.session = session
        self.port = port
        self.path = path
        self.host = host
        self.long_poll_timeout = long_poll_timeout

        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

        self.app = Starlette(
            routes=[
                Route(WAIT_FOR_AUTH_PATH, self._handle_wait_for_auth, methods=["GET"]),
                Route(self.path, self._handle_redirect, methods=["GET"]),
            ],
            exception_handlers={MissingCodeError: self._handle_missing_code},
        )

    @property
    def redirect_url(self) -> str:
        """Redirect URI to register with the authorization server."""
        return f"http://localhost:{self.port}{self.path}"

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _handle_redirect(self, request: Request) -> Response:
        error = request.query_params.get("error")
        if error:
            description = request.query_params.get("error_description", "")
            logger.error("Authorization failed: %s %s", error, description)
            return PlainTextResponse(f"Error: {error} {description}".strip(), status_code=400)

        code = request.query_params.get("code")
        if not code:
            raise MissingCodeError("No authorization code received")

        self.session.set_auth_code(code, request.query_params.get("state"))
        return PlainTextResponse(AUTH_SUCCESS_PAGE)

    async def _handle_missing_code(self, request: Request, exc: Exception) -> Response:
        logger.warning("Redirect without authorization code: %s", request.url.path)
        return PlainTextResponse(f"Error: {exc}", status_code=400)

    async def _handle_wait_for_auth(self, request: Request) -> Response:
        if self.session.is_completed:
            logger.debug("Auth already completed, returning 200")
            return PlainTextResponse(AUTH_COMPLETED)

        if request.query_params.get("poll") == "false":
            logger.debug("Client requested no long poll, responding with 202")
            return PlainTextResponse(AUTH_IN_PROGRESS, status_code=202)

        # One response per request: completion and timeout race inside a single await
        if await self.session.wait_for_completion(self.long_poll_timeout):
            logger.info("Auth completed during long poll, responding with 200")
            return PlainTextResponse(AUTH_COMPLETED)

        logger.debug("Long poll timeout reached, responding with 202")
        return PlainTextResponse(AUTH_IN_PROGRESS, status_code=202)

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise PortBindError(f"Unable to bind {self.host}:{self.port}: {e}") from e
        sock.listen(16)
        sock.setblocking(False)
        return sock

    async def start(self) -> None:
        """Bind the listener and wait until it accepts connections.

        Raises:
            PortBindError: If the port cannot be bound
            RuntimeError: If the server stops during startup
        """
        if self.is_running:
            return

        sock = self._bind()
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level="warning",
            lifespan="off",
            ws="none",
            timeout_graceful_shutdown=SHUTDOWN_GRACE_PERIOD,
        )
        self._server = uvicorn.Server(config)

        # _serve() skips uvicorn's own signal capture; shutdown is driven by stop()
        self._task = asyncio.create_task(self._server._serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                sock.close()
                exc = self._task.exception()
                raise RuntimeError(f"OAuth callback server failed to start: {exc}")
            await asyncio.sleep(STARTUP_POLL_INTERVAL)

        logger.info("OAuth callback server running at http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the listener. Safe to call more than once."""
        if self._server is None or self._task is None:
            return

        self._server.should_exit = True
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._server = None
            self._task = None
        logger.info("OAuth callback server stopped")
