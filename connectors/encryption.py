"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Each ciphertext carries its own random IV, so encrypting the same token
twice yields different strings.  The process-wide key is loaded from
``config.token_encryption_key`` (env var: ``TOKEN_ENCRYPTION_KEY``).
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from cryptography.fernet import Fernet

from config.settings import config

logger = logging.getLogger(__name__)


class TokenCipher:
    """Symmetric cipher for token strings."""

    def __init__(self, key: Union[str, bytes]):
        if not key:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY is required. Generate one with: "
                "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """Return the Fernet ciphertext (URL-safe base64)."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a token read from the store.

        Raises
        ------
        cryptography.fernet.InvalidToken
            The ciphertext is malformed, tampered with, or was produced
            under a different key.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()


_cipher: Optional[TokenCipher] = None


def get_cipher() -> TokenCipher:
    """Lazy-initialise the process cipher once."""
    global _cipher
    if _cipher is None:
        _cipher = TokenCipher(config.token_encryption_key)
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")
    return _cipher


def encrypt_token(plaintext: str) -> str:
    """Encrypt a token string for storage with the process cipher."""
    return get_cipher().encrypt(plaintext)


def decrypt_token(ciphertext: str) -> str:
    """Decrypt a stored token string with the process cipher."""
    return get_cipher().decrypt(ciphertext)
