"""Local TCP port allocation for the OAuth callback listener."""

from __future__ import annotations

import errno
import socket

from .errors import PortBindError
from .logging_config import get_logger

logger = get_logger("ports")

LOOPBACK_HOST = "127.0.0.1"


def _probe(port: int) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK_HOST, port))
        sock.listen(1)
        return sock.getsockname()[1]


def find_available_port(preferred_port: int | None = None) -> int:
    """Find a free port on the loopback interface.

    The preferred port is tried first; if it is in use an OS-assigned
    port is returned instead. The probe socket is closed before returning,
    so the caller binds its own listener afterwards.

    Args:
        preferred_port: Port to try first (None or 0 for any port)

    Returns:
        A port number between 1 and 65535

    Raises:
        PortBindError: If binding fails for a reason other than the port
            being in use
    """
    try:
        return _probe(preferred_port or 0)
    except OSError as e:
        if e.errno != errno.EADDRINUSE:
            raise PortBindError(f"Unable to bind port {preferred_port}: {e}") from e
        logger.debug("Preferred port %s in use, asking the OS", preferred_port)

    try:
        return _probe(0)
    except OSError as e:
        raise PortBindError(f"Unable to bind an ephemeral port: {e}") from e
