"""Coordination between bridge instances connecting to the same server.

The first instance to need authorization starts the callback listener and
records ``{pid, port, timestamp}`` in a per-server lockfile. Later
instances find the lock, long-poll the owner's ``/wait-for-auth`` endpoint
until the browser flow finishes, and then use the tokens the owner saved
to the shared token store (shared-auth mode).
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Awaitable, Callable

import httpx
import msgspec

from .callback_server import (
    DEFAULT_CALLBACK_PATH,
    LONG_POLL_TIMEOUT,
    WAIT_FOR_AUTH_PATH,
    CallbackServer,
)
from .context import AuthSession
from .logging_config import get_logger
from .ports import LOOPBACK_HOST

logger = get_logger("coordination")

# Locks older than this are ignored even if their owner is still alive
LOCK_MAX_AGE = 30 * 60
PROBE_TIMEOUT = 2.0

SHARED_AUTH_CODE = ""


class LockfileData(msgspec.Struct):
    """Contents of a per-server lockfile."""

    pid: int
    port: int
    timestamp: float


class AuthCoordination(msgspec.Struct, kw_only=True):
    """Outcome of ``coordinate_auth``.

    Holds a live server and a callable, so it is never encoded.
    """

    server: CallbackServer | None
    wait_for_auth_code: Callable[[], Awaitable[str]]
    skip_browser_auth: bool
    callback_port: int


def get_lockfile_path(config_dir: Path, server_url_hash: str) -> Path:
    return config_dir / f"{server_url_hash}_lock.json"


def write_lockfile(path: Path, pid: int, port: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = LockfileData(pid=pid, port=port, timestamp=time.time())
    path.write_bytes(msgspec.json.encode(data))
    logger.debug("Wrote lockfile %s (pid=%d, port=%d)", path, pid, port)


def read_lockfile(path: Path) -> LockfileData | None:
    """Read a lockfile. Missing or corrupt files read as None."""
    try:
        return msgspec.json.decode(path.read_bytes(), type=LockfileData)
    except FileNotFoundError:
        return None
    except (OSError, msgspec.DecodeError) as e:
        logger.warning("Ignoring unreadable lockfile %s: %s", path, e)
        return None


def delete_lockfile(path: Path) -> None:
    try:
        path.unlink()
        logger.debug("Deleted lockfile %s", path)
    except FileNotFoundError:
        pass


def is_pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


def _wait_for_auth_url(port: int) -> str:
    return f"http://{LOOPBACK_HOST}:{port}{WAIT_FOR_AUTH_PATH}"


async def is_lock_valid(
    lock: LockfileData,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Whether a lock belongs to a live instance whose listener answers."""
    if time.time() - lock.timestamp > LOCK_MAX_AGE:
        logger.debug("Lockfile expired")
        return False

    if not is_pid_running(lock.pid):
        logger.debug("Lock owner process %d is not running", lock.pid)
        return False

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=PROBE_TIMEOUT)
    try:
        response = await client.get(_wait_for_auth_url(lock.port), params={"poll": "false"})
    except httpx.HTTPError as e:
        logger.debug("Lock owner listener not reachable: %s", e)
        return False
    finally:
        if owns_client:
            await client.aclose()

    return response.status_code in (200, 202)


async def wait_for_authentication(
    port: int,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Long-poll another instance until its authorization completes.

    Returns:
        True once the other instance reports completion, False if it
        answers with an unexpected status or cannot be reached
    """
    logger.info("Waiting for authentication from the instance on port %d...", port)

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=LONG_POLL_TIMEOUT + 5)
    try:
        while True:
            try:
                response = await client.get(_wait_for_auth_url(port))
            except httpx.HTTPError as e:
                logger.error("Error waiting for authentication: %s", e)
                return False

            if response.status_code == 200:
                logger.info("Authentication completed by the other instance")
                return True
            if response.status_code == 202:
                logger.debug("Authentication still in progress")
                continue

            logger.error("Unexpected response status while waiting: %d", response.status_code)
            return False
    finally:
        if owns_client:
            await client.aclose()


async def coordinate_auth(
    server_url_hash: str,
    callback_port: int,
    session: AuthSession,
    config_dir: Path,
    callback_path: str = DEFAULT_CALLBACK_PATH,
) -> AuthCoordination:
    """Decide whether this instance runs the browser flow.

    Args:
        server_url_hash: Per-server key from ``get_server_url_hash``
        callback_port: Port for our own listener
        session: Session our listener writes the code into
        config_dir: Directory holding lockfiles
        callback_path: Redirect route of our listener

    Returns:
        AuthCoordination for either shared-auth mode (another instance
        completed the flow) or primary mode (our listener is running)
    """
    lockfile = get_lockfile_path(config_dir, server_url_hash)
    lock = read_lockfile(lockfile)

    if lock is not None and lock.pid != os.getpid():
        if await is_lock_valid(lock):
            logger.info("Another instance is handling authentication on port %d", lock.port)
            if await wait_for_authentication(lock.port):
                owner_port = lock.port

                async def wait_for_shared_auth() -> str:
                    await wait_for_authentication(owner_port)
                    return SHARED_AUTH_CODE

                return AuthCoordination(
                    server=None,
                    wait_for_auth_code=wait_for_shared_auth,
                    skip_browser_auth=True,
                    callback_port=owner_port,
                )
            logger.info("Taking over authentication")
        else:
            logger.info("Lockfile is stale, taking over authentication")
        delete_lockfile(lockfile)

    server = CallbackServer(session, port=callback_port, path=callback_path)
    await server.start()
    write_lockfile(lockfile, os.getpid(), callback_port)

    return AuthCoordination(
        server=server,
        wait_for_auth_code=session.wait_for_auth_code,
        skip_browser_auth=False,
        callback_port=callback_port,
    )
