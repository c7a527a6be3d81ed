"""Logging setup for MCP OAuth Bridge.

All output goes to stderr so it never interferes with the MCP message
stream on stdout. Each record carries the process id so the output of
several concurrent bridge instances can be told apart.
"""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER_NAME = "mcp_oauth_bridge"

LOG_FORMAT = "[%(process)d] %(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the package logger.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL environment
            variable, then INFO. Unknown names fall back to INFO.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(log_level)

    # Avoid duplicate handlers when called more than once
    if not any(getattr(h, "_mcp_oauth_bridge", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mcp_oauth_bridge = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under the package logger.

    Args:
        name: Area name, e.g. "proxy" or "oauth.storage"

    Returns:
        Logger named mcp_oauth_bridge.<name>
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
