"""Fernet encryption for provider OAuth tokens stored at rest."""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""


class EncryptionKeyError(EncryptionError):
    """Raised when a stored token was encrypted with a different key."""


_cipher: Fernet | None = None


def _get_cipher() -> Fernet:
    global _cipher
    if _cipher is not None:
        return _cipher

    key_env = os.getenv("ENCRYPTION_KEY", "").strip()
    if key_env:
        try:
            _cipher = Fernet(key_env.encode())
        except ValueError as e:
            raise EncryptionError("Invalid ENCRYPTION_KEY format. Must be a Fernet key (base64-encoded string).") from e
    else:
        logger.warning(
            "ENCRYPTION_KEY not set. Using an ephemeral key; stored provider tokens "
            "will be unreadable after restart. Generate one with Fernet.generate_key()."
        )
        _cipher = Fernet(Fernet.generate_key())
    return _cipher


def reset_cipher() -> None:
    """Drop the cached cipher so the next call re-reads ENCRYPTION_KEY."""
    global _cipher
    _cipher = None


def encrypt_token(token: str) -> str:
    try:
        return _get_cipher().encrypt(token.encode()).decode()
    except EncryptionError:
        raise
    except Exception as e:
        logger.error(f"Token encryption failed: {type(e).__name__}")
        raise EncryptionError(f"Failed to encrypt token: {e}") from e


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a token produced by encrypt_token.

    Raises:
        EncryptionKeyError: The token was encrypted with another key
        EncryptionError: Any other decryption failure
    """
    try:
        return _get_cipher().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        logger.error("Token decryption failed: ENCRYPTION_KEY is missing or has changed")
        raise EncryptionKeyError("Stored token cannot be decrypted with the current ENCRYPTION_KEY. The athlete must reconnect.") from e
    except EncryptionError:
        raise
    except Exception as e:
        logger.error(f"Token decryption failed: {type(e).__name__}")
        raise EncryptionError(f"Failed to decrypt token: {e}") from e
