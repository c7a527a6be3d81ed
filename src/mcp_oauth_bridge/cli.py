"""Command-line entry point and process lifecycle for MCP OAuth Bridge."""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Annotated, Awaitable, Callable

import msgspec
import typer
from dotenv import load_dotenv

from . import __version__
from .connection import connect_to_remote_server
from .context import AuthSession
from .coordination import coordinate_auth, delete_lockfile, get_lockfile_path
from .errors import BridgeError
from .helpers import get_server_url_hash, validate_server_url
from .logging_config import get_logger, setup_logging
from .oauth.provider import BrowserOAuth
from .oauth.storage import clear_storage, create_storage, get_storage_directory
from .ports import find_available_port
from .proxy import mcp_proxy
from .transport import RemoteTransport, StdioServerTransport

load_dotenv()
setup_logging()

logger = get_logger("cli")

DEFAULT_CALLBACK_PORT = 3334
DEFAULT_CONFIG_DIR = Path.home() / ".mcp-auth"


class BridgeConfig(msgspec.Struct, kw_only=True):
    """Bridge configuration."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    default_port: int = DEFAULT_CALLBACK_PORT
    storage_encryption_key: str | None = None


class CommandLineArgs(msgspec.Struct, kw_only=True):
    """Validated command-line inputs."""

    server_url: str
    callback_port: int
    clean: bool = False
    headers: str = ""


def get_config() -> BridgeConfig:
    """Load configuration from environment variables."""
    config_dir = Path(
        os.getenv("MCP_BRIDGE_CONFIG_DIR") or DEFAULT_CONFIG_DIR
    ).expanduser()
    default_port = int(os.getenv("MCP_BRIDGE_DEFAULT_PORT") or DEFAULT_CALLBACK_PORT)
    encryption_key = os.getenv("MCP_BRIDGE_STORAGE_ENCRYPTION_KEY") or None

    logger.debug(
        "Loaded config: config_dir=%s, default_port=%d, encrypted_storage=%s",
        config_dir,
        default_port,
        bool(encryption_key),
    )

    return BridgeConfig(
        config_dir=config_dir,
        default_port=default_port,
        storage_encryption_key=encryption_key,
    )


def parse_command_line_args(
    server_url: str,
    callback_port: int | None,
    clean: bool,
    headers: str,
    default_port: int = DEFAULT_CALLBACK_PORT,
) -> CommandLineArgs:
    """Validate command-line inputs and resolve the callback port.

    Raises:
        InvalidServerUrlError: If the URL is not https or loopback http
        PortBindError: If no callback port can be found
    """
    validate_server_url(server_url)

    if callback_port:
        logger.info("Using specified callback port: %d", callback_port)
    else:
        callback_port = find_available_port(default_port)
        logger.info("Using automatically selected callback port: %d", callback_port)

    if clean:
        logger.info("Clean mode enabled: config files will be reset before reading")

    return CommandLineArgs(
        server_url=server_url,
        callback_port=callback_port,
        clean=clean,
        headers=headers,
    )


def setup_signal_handlers(
    cleanup: Callable[[], Awaitable[None]],
    shutdown: asyncio.Event,
    main_task: asyncio.Task | None = None,
) -> None:
    """Run ``cleanup``, set ``shutdown`` and cancel ``main_task`` on SIGINT or SIGTERM.

    Cancelling ``main_task`` abandons anything it is blocked on, such as an
    authorization wait that has no timeout.
    """
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    async def handle_shutdown(sig: signal.Signals) -> None:
        logger.info("Received signal %s, shutting down...", sig.name)
        # A set event means the main task is already on its way out
        exiting = shutdown.is_set()
        await cleanup()
        shutdown.set()
        if main_task is not None and not exiting and not main_task.done():
            main_task.cancel()

    def schedule_shutdown(sig: signal.Signals) -> None:
        task = asyncio.ensure_future(handle_shutdown(sig))
        pending.add(task)
        task.add_done_callback(pending.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, schedule_shutdown, sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler; main() catches KeyboardInterrupt
            pass


async def run_bridge_async(args: CommandLineArgs, config: BridgeConfig) -> None:
    """Authorize, connect and proxy until either side closes or a signal arrives."""
    session = AuthSession()
    server_url_hash = get_server_url_hash(args.server_url)
    storage_dir = get_storage_directory(config.config_dir, server_url_hash)
    lockfile = get_lockfile_path(config.config_dir, server_url_hash)

    if args.clean:
        clear_storage(storage_dir)
        delete_lockfile(lockfile)

    coordination = await coordinate_auth(
        server_url_hash, args.callback_port, session, config.config_dir
    )

    provider = BrowserOAuth(
        args.server_url,
        session,
        callback_port=coordination.callback_port,
        token_storage=create_storage(storage_dir, config.storage_encryption_key),
        skip_browser_auth=coordination.skip_browser_auth,
    )

    local = StdioServerTransport()
    remote: RemoteTransport | None = None
    shutdown = asyncio.Event()
    cleaned_up = False

    async def cleanup() -> None:
        nonlocal cleaned_up
        if cleaned_up:
            return
        cleaned_up = True
        if remote is not None:
            await remote.close()
        await local.close()
        if coordination.server is not None:
            await coordination.server.stop()
            delete_lockfile(lockfile)

    async def on_transport_close() -> None:
        shutdown.set()

    main_task = asyncio.current_task()
    setup_signal_handlers(cleanup, shutdown, main_task)

    try:
        remote = await connect_to_remote_server(
            args.server_url,
            provider,
            coordination.wait_for_auth_code,
            skip_browser_auth=coordination.skip_browser_auth,
            headers=args.headers,
            cipher=session.cipher,
        )

        mcp_proxy(local, remote)
        local.on_close(on_transport_close)
        remote.on_close(on_transport_close)
        await local.start()

        logger.info("Local STDIO server running")
        logger.info("Proxy established successfully between local STDIO and remote server")
        logger.info("Press Ctrl+C to exit")

        await shutdown.wait()
    except asyncio.CancelledError:
        if not shutdown.is_set():
            raise
        # Cancelled by the signal handler; exit normally
        if main_task is not None:
            main_task.uncancel()
        logger.info("Bridge stopped by signal")
    finally:
        await cleanup()


app = typer.Typer(
    name="mcp-oauth-bridge",
    help="MCP OAuth Bridge - connect a local STDIO MCP client to a remote OAuth-protected server.",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.command()
def main(
    server_url: Annotated[
        str,
        typer.Argument(help="Remote server URL (https, or http on localhost)"),
    ],
    callback_port: Annotated[
        int | None,
        typer.Argument(help="OAuth callback port (default: first free port from 3334)"),
    ] = None,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Reset stored tokens and lockfile before connecting"),
    ] = False,
    header: Annotated[
        str,
        typer.Option("--header", help='Extra headers as "name:value,name:value"'),
    ] = "",
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit",
        ),
    ] = False,
) -> None:
    """Run the MCP OAuth Bridge."""
    config = get_config()

    try:
        args = parse_command_line_args(
            server_url, callback_port, clean, header, default_port=config.default_port
        )
        asyncio.run(run_bridge_async(args, config))
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work
        logger.info("Bridge stopped by user")
    except BridgeError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
