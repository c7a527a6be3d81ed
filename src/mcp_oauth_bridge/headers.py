"""Parsing of the ``--header`` command-line string.

The string is a comma-separated list of ``name:value`` pairs, for example::

    "x-api-user:alice,password:hunter2,secret:s3cr3t"

Two header names have special meaning:

- ``keysforencryption``: pipe-separated names of headers whose values
  must be encrypted. Overrides the caller's default list.
- the secret header (``secret`` by default): passphrase used for that
  encryption.

Neither control header is ever forwarded to the remote server.
"""

from __future__ import annotations

from .crypto import HeaderCipher
from .logging_config import get_logger

logger = get_logger("headers")

KEYS_FOR_ENCRYPTION_HEADER = "keysforencryption"

# Fixed field names used when connecting to the remote server
DEFAULT_KEYS_FOR_ENCRYPTION = "password"
DEFAULT_SECRET_KEY = "secret"


def _split_names(value: str, separator: str) -> list[str]:
    return [name.strip().lower() for name in value.split(separator) if name.strip()]


def parse_headers(
    headers: str,
    keys_for_encryption: str,
    secret_key: str,
    cipher: HeaderCipher | None = None,
) -> dict[str, str]:
    """Turn a header string into a name -> value mapping.

    Names are lower-cased and trimmed; values are trimmed and kept whole,
    so further colons stay part of the value. Entries without a colon or
    with an empty name are skipped, and later duplicates win.

    Args:
        headers: Raw ``name:value,name:value`` string
        keys_for_encryption: Comma-separated header names to encrypt,
            used unless a ``keysforencryption`` header is present
        secret_key: Name of the header holding the encryption passphrase
        cipher: Cipher to encrypt with (a fresh one if omitted)

    Returns:
        Header mapping with sensitive values encrypted and both control
        headers removed
    """
    credentials: dict[str, str] = {}
    override: list[str] | None = None

    for entry in headers.split(","):
        name, sep, value = entry.partition(":")
        name = name.strip().lower()
        if not sep or not name:
            continue
        value = value.strip()
        credentials[name] = value
        if name == KEYS_FOR_ENCRYPTION_HEADER:
            override = _split_names(value, "|")

    names_to_encrypt = (
        override if override is not None else _split_names(keys_for_encryption, ",")
    )
    secret_key = secret_key.lower()
    logger.debug("Header names selected for encryption: %s", names_to_encrypt)

    passphrase = credentials.get(secret_key)
    if passphrase is not None:
        cipher = cipher or HeaderCipher()
        selected = set(names_to_encrypt)
        for name in credentials:
            if name in selected and name != secret_key:
                credentials[name] = cipher.encrypt(credentials[name], passphrase)
                logger.debug("Encrypted header value: %s", name)

    # Never forward the passphrase or the control header upstream
    credentials.pop(secret_key, None)
    credentials.pop(KEYS_FOR_ENCRYPTION_HEADER, None)

    logger.debug("Parsed headers: %s", sorted(credentials))
    return credentials
