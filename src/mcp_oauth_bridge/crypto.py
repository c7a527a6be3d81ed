"""Symmetric encryption for sensitive header values.

Values are encrypted with AES-256-CBC. The key is derived from a
caller-supplied secret: the first 32 hex characters of its SHA-512 digest,
used as the raw key bytes. Ciphertext is packaged as hex(iv) + hex(ct) so
it can travel as a single header value.

Note:
    One ``HeaderCipher`` uses the same IV for every encryption it performs.
    Encrypting two values with the same key therefore reveals whether they
    share a prefix. This mirrors the format consumed by existing remote
    servers; see DESIGN.md for the decision record.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import DecryptionError

IV_SIZE = 16
IV_HEX_LENGTH = IV_SIZE * 2
KEY_HEX_LENGTH = 32


def derive_key(secret_key: str) -> bytes:
    """Derive the AES-256 key for a secret.

    Args:
        secret_key: Passphrase supplied by the caller

    Returns:
        32 bytes: the ASCII encoding of the first 32 hex chars of SHA-512
    """
    digest = hashlib.sha512(secret_key.encode("utf-8")).hexdigest()
    return digest[:KEY_HEX_LENGTH].encode("ascii")


class HeaderCipher:
    """AES-256-CBC helper bound to one IV for its whole lifetime.

    Example:
        >>> cipher = HeaderCipher()
        >>> token = cipher.encrypt("hunter2", "secret")
        >>> cipher.decrypt(token, "secret")
        'hunter2'
    """

    def __init__(self, iv: bytes | None = None) -> None:
        """Initialize the cipher.

        Args:
            iv: 16-byte initialization vector. Random when omitted.

        Raises:
            ValueError: If iv is not 16 bytes long
        """
        if iv is not None and len(iv) != IV_SIZE:
            raise ValueError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        self._iv = iv if iv is not None else os.urandom(IV_SIZE)

    @property
    def iv(self) -> bytes:
        """The IV used for every encryption."""
        return self._iv

    def encrypt(self, data: str, secret_key: str) -> str:
        """Encrypt a string.

        Args:
            data: Plaintext to encrypt
            secret_key: Passphrase to derive the key from

        Returns:
            hex(iv) followed by hex(ciphertext)
        """
        padder = sym_padding.PKCS7(128).padder()
        padded = padder.update(data.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(
            algorithms.AES(derive_key(secret_key)), modes.CBC(self._iv)
        ).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return self._iv.hex() + ciphertext.hex()

    def decrypt(self, data: str, secret_key: str) -> str:
        """Decrypt a string produced by ``encrypt``.

        The IV is read from the first 32 hex characters of ``data``, not
        from this instance, so values from another process can be read.

        Args:
            data: hex(iv) + hex(ciphertext)
            secret_key: Passphrase the value was encrypted with

        Returns:
            The plaintext

        Raises:
            DecryptionError: If the input is malformed or the key is wrong
        """
        if len(data) <= IV_HEX_LENGTH:
            raise DecryptionError("Ciphertext too short")

        try:
            iv = bytes.fromhex(data[:IV_HEX_LENGTH])
            ciphertext = bytes.fromhex(data[IV_HEX_LENGTH:])
            decryptor = Cipher(
                algorithms.AES(derive_key(secret_key)), modes.CBC(iv)
            ).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = sym_padding.PKCS7(128).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # bytes.fromhex, block size, padding and UTF-8 errors are all ValueErrors
            raise DecryptionError(f"Unable to decrypt value: {e}") from e
