"""Token storage backend for the OAuth client.

The OAuth client persists its tokens and client registration through an
``AsyncKeyValue`` store. Using a disk store in a directory shared by every
bridge instance for the same server lets a secondary instance pick up the
tokens obtained by the instance that ran the browser flow.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from ..logging_config import get_logger

if TYPE_CHECKING:
    from key_value.aio.protocols.key_value import AsyncKeyValue

logger = get_logger("oauth.storage")


def get_storage_directory(config_dir: Path, server_url_hash: str) -> Path:
    """Directory holding the token store for one remote server."""
    return config_dir / server_url_hash


def create_storage(
    directory: Path | None = None,
    encryption_key: str | None = None,
) -> "AsyncKeyValue":
    """Create the token storage backend.

    Args:
        directory: Directory for a persistent disk store. When None, an
            in-memory store is used (tokens are lost on exit and cannot be
            shared between instances).
        encryption_key: Optional Fernet key, or any string to derive one
            from. When given, stored values are encrypted at rest.

    Returns:
        AsyncKeyValue: Configured storage backend
    """
    logger.info(
        "Creating token storage: type=%s, encrypted=%s",
        "disk" if directory is not None else "memory",
        bool(encryption_key),
    )

    if directory is None:
        from key_value.aio.stores.memory import MemoryStore

        storage: AsyncKeyValue = MemoryStore()
        logger.debug("Created in-memory token storage")

    else:
        from key_value.aio.stores.disk import DiskStore

        storage = DiskStore(directory=directory)
        logger.debug("Created disk token storage: directory=%s", directory)

    if encryption_key:
        from cryptography.fernet import Fernet
        from key_value.aio.wrappers.encryption.fernet import FernetEncryptionWrapper

        # A valid Fernet key (base64, 44 chars) is used directly,
        # anything else is treated as source material for key derivation
        try:
            fernet = Fernet(encryption_key.encode())
            storage = FernetEncryptionWrapper(storage, fernet=fernet)
        except ValueError:
            storage = FernetEncryptionWrapper(storage, source_material=encryption_key)
        logger.debug("Applied Fernet encryption wrapper to token storage")

    return storage


def clear_storage(directory: Path) -> bool:
    """Delete a disk token store.

    Returns:
        True if something was removed
    """
    if not directory.exists():
        return False
    shutil.rmtree(directory)
    logger.info("Cleared token storage: %s", directory)
    return True
