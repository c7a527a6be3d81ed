"""MCP OAuth Bridge.

Bridges a local stdio MCP client to a remote MCP server that requires
OAuth authorization:

- Bidirectional message proxy between the local and remote transports
- OAuth authorization-code flow with a local callback listener
- Long-poll coordination so concurrent instances share one browser flow
- Transparent reconnection after the server answers Unauthorized
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
