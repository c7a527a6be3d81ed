"""Small helpers shared by the CLI and coordination layers."""

from __future__ import annotations

import hashlib
from urllib.parse import urlparse

from .errors import InvalidServerUrlError

LOOPBACK_HOSTNAMES = ("localhost", "127.0.0.1")


def get_server_url_hash(server_url: str) -> str:
    """Stable per-server key for cache and lock file names.

    Not security sensitive; it only has to be stable across runs.

    Returns:
        32-character hex MD5 digest of the URL
    """
    return hashlib.md5(server_url.encode("utf-8")).hexdigest()


def validate_server_url(server_url: str) -> str:
    """Check that a server URL is safe to send credentials to.

    Accepts ``https:`` URLs and ``http:`` URLs on a loopback host.

    Returns:
        The URL unchanged

    Raises:
        InvalidServerUrlError: For any other scheme or host
    """
    parsed = urlparse(server_url)
    if parsed.scheme == "https" and parsed.hostname:
        return server_url
    if parsed.scheme == "http" and parsed.hostname in LOOPBACK_HOSTNAMES:
        return server_url
    raise InvalidServerUrlError(
        f"Server URL must use https, or http on localhost: {server_url!r}"
    )
