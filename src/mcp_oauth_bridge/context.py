"""Session-scoped authorization state.

An ``AuthSession`` is created once per bridge process and handed to the
callback server, the OAuth client adapter and the header parser. It holds
the only mutable state those components share:

- the authorization code (written at most once, then read many times)
- the ``state`` parameter that came with it
- the header cipher and therefore its IV

Usage:
    session = AuthSession()
    server = CallbackServer(session, port=3334)
    code = await session.wait_for_auth_code()
"""

from __future__ import annotations

import asyncio

from .crypto import HeaderCipher
from .logging_config import get_logger

logger = get_logger("context")


class AuthSession:
    """Single-write, idempotent-read holder for the OAuth authorization code."""

    def __init__(self, cipher: HeaderCipher | None = None) -> None:
        self.cipher = cipher or HeaderCipher()
        self._auth_code: str | None = None
        self._state: str | None = None
        self._completed = asyncio.Event()
        self._waiters: list[asyncio.Future[str]] = []

    @property
    def auth_code(self) -> str | None:
        """The authorization code, or None until the redirect arrives."""
        return self._auth_code

    @property
    def state(self) -> str | None:
        """The OAuth ``state`` parameter received with the code."""
        return self._state

    @property
    def is_completed(self) -> bool:
        return self._auth_code is not None

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    def set_auth_code(self, code: str, state: str | None = None) -> bool:
        """Store the authorization code and wake every waiter.

        Args:
            code: Authorization code from the OAuth redirect
            state: Optional ``state`` parameter from the redirect

        Returns:
            True if this call stored the code, False if one was already set
        """
        if self._auth_code is not None:
            logger.debug("Auth code already received, ignoring repeated redirect")
            return False

        self._auth_code = code
        self._state = state
        self._completed.set()

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(code)

        logger.info("Auth code received, notified %d waiter(s)", len(waiters))
        return True

    async def wait_for_auth_code(self) -> str:
        """Return the authorization code, waiting for it if necessary.

        There is no timeout: the interactive flow has no deadline.
        """
        if self._auth_code is not None:
            return self._auth_code

        waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def wait_for_completion(self, timeout: float) -> bool:
        """Wait until the code arrives or ``timeout`` seconds pass.

        Returns:
            True if the code arrived in time, False on timeout
        """
        try:
            await asyncio.wait_for(self._completed.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
