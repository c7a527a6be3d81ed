"""OAuth module for MCP OAuth Bridge.

The bridge consumes an external OAuth client rather than implementing
token issuance:

- **BrowserOAuth**: fastmcp OAuth provider that receives its authorization
  code from the bridge's callback listener
- **AuthProvider**: the interface the remote transport relies on
- **create_storage / clear_storage**: shared token store for the OAuth client
"""

from .provider import AuthProvider, BrowserOAuth
from .storage import clear_storage, create_storage, get_storage_directory

__all__ = [
    # Providers
    "AuthProvider",
    "BrowserOAuth",
    # Storage
    "create_storage",
    "clear_storage",
    "get_storage_directory",
]
