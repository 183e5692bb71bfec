"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``). Without a key, tokens are stored as plaintext
and a warning is logged once.
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _get_fernet() -> Optional[Fernet]:
    global _fernet, _initialised
    if _initialised:
        return _fernet

    key = config.token_encryption_key
    if not key:
        logger.warning("TOKEN_ENCRYPTION_KEY not set — OAuth tokens will be stored as plaintext")
    else:
        try:
            _fernet = Fernet(key.encode())
            logger.info("Token encryption enabled (Fernet)")
        except ValueError as exc:
            logger.error("Invalid TOKEN_ENCRYPTION_KEY, tokens will be stored as plaintext: %s", exc)
    _initialised = True
    return _fernet


def reset_cipher() -> None:
    """Forget the cached cipher so the next call re-reads the config."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False


def encrypt_token(plaintext: str) -> str:
    fernet = _get_fernet()
    if fernet is None:
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a token read from the database.

    Values written before encryption was enabled are not valid Fernet tokens
    and are returned unchanged.
    """
    fernet = _get_fernet()
    if fernet is None:
        return ciphertext
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    return _get_fernet() is not None
