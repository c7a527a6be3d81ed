"""Transport interface and stream-backed implementations.

A transport is a bidirectional message channel. Handlers are registered
explicitly and are awaited one message at a time, so messages from one
transport are always delivered in receipt order.

``StreamTransport`` adapts the ``(read_stream, write_stream)`` pair yielded
by the ``mcp`` SDK's transport context managers (``stdio_server()``,
``sse_client()``) to this interface. The message framing and encoding stay
inside the SDK.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from mcp.client.sse import sse_client
from mcp.server.stdio import stdio_server

from .errors import RemoteConnectionError, UnauthorizedError, is_unauthorized
from .logging_config import get_logger

if TYPE_CHECKING:
    from .oauth.provider import AuthProvider

logger = get_logger("transport")

MessageHandler = Callable[[Any], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]
StreamsFactory = Callable[[], AbstractAsyncContextManager[tuple[Any, Any]]]


class Transport(Protocol):
    """Bidirectional message channel."""

    async def start(self) -> None: ...

    async def send(self, message: Any) -> None: ...

    async def close(self) -> None: ...

    def on_message(self, handler: MessageHandler) -> None: ...

    def on_close(self, handler: CloseHandler) -> None: ...

    def on_error(self, handler: ErrorHandler) -> None: ...


class RemoteTransport(Transport, Protocol):
    """Transport to a remote server that may require OAuth."""

    async def finish_auth(self, authorization_code: str) -> None: ...


class StreamTransport:
    """Transport over an async context manager yielding a stream pair.

    A single reader task owns the context manager for the whole session:
    it enters it in ``start()``, dispatches every item read to the message
    handlers (exceptions read from the stream go to the error handlers) and
    fires the close handlers exactly once when the stream ends or
    ``close()`` is called.
    """

    def __init__(self, streams: StreamsFactory, name: str = "transport") -> None:
        self.name = name
        self._streams = streams
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[CloseHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._write_stream: Any = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self._write_stream is not None

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    async def start(self) -> None:
        """Open the underlying streams.

        Raises:
            RuntimeError: If the transport was already started
            Exception: Whatever the stream context raised while opening
        """
        if self._task is not None:
            raise RuntimeError(f"{self.name} transport already started")

        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(ready), name=f"{self.name}-reader")
        await ready
        logger.debug("%s transport started", self.name)

    async def _run(self, ready: asyncio.Future[None]) -> None:
        try:
            async with self._streams() as (read_stream, write_stream):
                self._write_stream = write_stream
                ready.set_result(None)
                async for item in read_stream:
                    if isinstance(item, Exception):
                        await self._emit_error(item)
                    else:
                        await self._emit_message(item)
        except asyncio.CancelledError:
            if not ready.done():
                ready.cancel()
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
                return
            await self._emit_error(e)
        finally:
            self._write_stream = None
            if ready.done() and not ready.cancelled() and ready.exception() is None:
                await self._emit_close()

    async def _emit_message(self, message: Any) -> None:
        for handler in list(self._message_handlers):
            try:
                await handler(message)
            except Exception as e:
                await self._emit_error(e)

    async def _emit_error(self, error: Exception) -> None:
        if not self._error_handlers:
            logger.error("Unhandled %s transport error: %s", self.name, error)
        for handler in list(self._error_handlers):
            try:
                await handler(error)
            except Exception:
                logger.exception("%s transport error handler failed", self.name)

    async def _emit_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("%s transport closed", self.name)
        for handler in list(self._close_handlers):
            try:
                await handler()
            except Exception:
                logger.exception("%s transport close handler failed", self.name)

    async def send(self, message: Any) -> None:
        """Send a message.

        Raises:
            RuntimeError: If the transport is not connected
        """
        if self._write_stream is None:
            raise RuntimeError(f"{self.name} transport is not connected")
        await self._write_stream.send(message)

    async def close(self) -> None:
        """Close the transport. Close handlers fire once."""
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        await asyncio.gather(task, return_exceptions=True)


class SSEClientTransport(StreamTransport):
    """Remote MCP server reached over Server-Sent Events."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        auth_provider: "AuthProvider | None" = None,
    ) -> None:
        """Initialize the transport.

        Args:
            url: Remote SSE endpoint
            headers: Extra request headers sent on every request
            auth_provider: OAuth client supplying ``httpx.Auth``
        """
        self.url = url
        self.headers = dict(headers or {})
        self.auth_provider = auth_provider

        auth = auth_provider.auth if auth_provider is not None else None
        super().__init__(
            lambda: sse_client(url, headers=self.headers, auth=auth),
            name="remote",
        )

    async def start(self) -> None:
        """Connect to the remote server.

        Raises:
            UnauthorizedError: If the server refused the credentials
            RemoteConnectionError: For any other connection failure
        """
        try:
            await super().start()
        except UnauthorizedError:
            raise
        except Exception as e:
            if is_unauthorized(e):
                raise UnauthorizedError(f"Unauthorized: {e}") from e
            raise RemoteConnectionError(f"Failed to connect to {self.url}: {e}") from e

    async def finish_auth(self, authorization_code: str) -> None:
        """Exchange an authorization code through the auth provider.

        Raises:
            UnauthorizedError: If no auth provider is configured
        """
        if self.auth_provider is None:
            raise UnauthorizedError("No auth provider configured for remote transport")
        await self.auth_provider.finish_auth(authorization_code)


class StdioServerTransport(StreamTransport):
    """Local MCP client attached to this process's stdin/stdout."""

    def __init__(self) -> None:
        super().__init__(stdio_server, name="local")
