"""Encryption helpers for storing shop access tokens at rest."""

import base64
import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from convertly.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get Fernet instance from the encryption key setting.

    Derives a valid 32-byte Fernet key from the config encryption_key
    using SHA-256, then base64-encodes it.

    Note: Changing encryption_key will make previously stored access tokens
    undecryptable and every shop will have to reinstall.
    """
    key_bytes = hashlib.sha256(settings.encryption_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def encrypt_token(token: str) -> str:
    """Encrypt a token string."""
    f = _get_fernet()
    return f.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt an encrypted token string.

    Raises:
        cryptography.fernet.InvalidToken: If the ciphertext was tampered with
            or encrypted under a different key.
    """
    f = _get_fernet()
    return f.decrypt(encrypted.encode()).decode()


def decrypt_token_or_none(encrypted: str | None) -> str | None:
    """Decrypt a stored token, returning None when it is absent or unreadable."""
    if not encrypted:
        return None
    try:
        return decrypt_token(encrypted)
    except InvalidToken:
        logger.error("Stored access token could not be decrypted; shop must reinstall")
        return None
