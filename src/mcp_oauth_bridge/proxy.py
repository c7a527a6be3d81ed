"""Bidirectional message proxy between the local client and the remote server."""

from __future__ import annotations

from typing import Any

from .logging_config import get_logger
from .transport import Transport

logger = get_logger("proxy")


def describe_message(message: Any) -> Any:
    """Short label for a message: its JSON-RPC method, else its id.

    Accepts ``mcp`` ``SessionMessage`` objects, bare JSON-RPC models and
    plain dicts.
    """
    inner = getattr(message, "message", message)
    inner = getattr(inner, "root", inner)
    if isinstance(inner, dict):
        return inner.get("method") or inner.get("id")
    return getattr(inner, "method", None) or getattr(inner, "id", None)


def mcp_proxy(transport_to_client: Transport, transport_to_server: Transport) -> None:
    """Wire two started transports together.

    Every message received on one side is sent verbatim to the other side.
    A failed send is logged and does not end the session. When one side
    closes, the other side is closed once; its resulting close event does
    not bounce back. Error events are logged only.

    Returns immediately; forwarding runs on the transports' reader tasks.

    Args:
        transport_to_client: Transport connected to the local MCP client
        transport_to_server: Transport connected to the remote MCP server
    """
    client_closed = False
    server_closed = False

    async def on_client_error(error: Exception) -> None:
        logger.error("Error from local client: %s", error)

    async def on_server_error(error: Exception) -> None:
        logger.error("Error from remote server: %s", error)

    async def forward_to_server(message: Any) -> None:
        logger.debug("[Local→Remote] %s", describe_message(message))
        try:
            await transport_to_server.send(message)
        except Exception as e:
            await on_server_error(e)

    async def forward_to_client(message: Any) -> None:
        logger.debug("[Remote→Local] %s", describe_message(message))
        try:
            await transport_to_client.send(message)
        except Exception as e:
            await on_client_error(e)

    async def on_client_close() -> None:
        nonlocal client_closed
        if server_closed:
            return
        client_closed = True
        logger.info("Local client closed, closing remote connection")
        try:
            await transport_to_server.close()
        except Exception as e:
            await on_server_error(e)

    async def on_server_close() -> None:
        nonlocal server_closed
        if client_closed:
            return
        server_closed = True
        logger.info("Remote server closed, closing local connection")
        try:
            await transport_to_client.close()
        except Exception as e:
            await on_client_error(e)

    transport_to_client.on_message(forward_to_server)
    transport_to_server.on_message(forward_to_client)
    transport_to_client.on_close(on_client_close)
    transport_to_server.on_close(on_server_close)
    transport_to_client.on_error(on_client_error)
    transport_to_server.on_error(on_server_error)
