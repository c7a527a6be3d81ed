"""Exception hierarchy for MCP OAuth Bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""


class UnauthorizedError(BridgeError):
    """The remote server rejected the connection as unauthorized."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class RemoteConnectionError(BridgeError):
    """Starting the remote transport failed for a reason other than auth."""


class PortBindError(BridgeError):
    """A probe listener could not be bound for a reason other than EADDRINUSE."""


class DecryptionError(BridgeError):
    """Ciphertext is malformed or was encrypted with a different key."""


class MissingCodeError(BridgeError):
    """The OAuth redirect arrived without an authorization code."""


class InvalidServerUrlError(BridgeError):
    """Server URL is neither https nor plain http on a loopback host."""


UNAUTHORIZED_MARKER = "Unauthorized"


def _iter_exceptions(error: BaseException):
    yield error
    for nested in getattr(error, "exceptions", ()):
        yield from _iter_exceptions(nested)
    if error.__cause__ is not None:
        yield from _iter_exceptions(error.__cause__)


def is_unauthorized(error: BaseException) -> bool:
    """Whether a transport start failure means "not authorized".

    Client libraries do not always raise a typed error, so both the type
    and the message are checked. Exception groups and explicit causes are
    searched too.
    """
    for exc in _iter_exceptions(error):
        if isinstance(exc, UnauthorizedError):
            return True
        if UNAUTHORIZED_MARKER in str(exc):
            return True
    return False
