"""Encryption at rest for platform credentials.

Tokens are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The key is
derived from the TOKEN_ENCRYPTION_KEY secret, so any sufficiently random
string can be used as configuration.
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from socialsync.config import TOKEN_ENCRYPTION_KEY


class TokenDecryptionError(Exception):
    """Ciphertext was produced with a different key or was tampered with."""


class TokenCipher:
    """Symmetric cipher for token columns."""

    def __init__(self, secret: str = TOKEN_ENCRYPTION_KEY):
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: Optional[str]) -> Optional[bytes]:
        """Encrypt a token, passing None through."""
        if plaintext is None:
            return None
        return self._fernet.encrypt(plaintext.encode("utf-8"))

    def decrypt(self, ciphertext: Optional[bytes]) -> Optional[str]:
        """Decrypt a token, passing None through.

        Raises:
            TokenDecryptionError: If the ciphertext cannot be authenticated
        """
        if ciphertext is None:
            return None
        try:
            return self._fernet.decrypt(bytes(ciphertext)).decode("utf-8")
        except InvalidToken as e:
            raise TokenDecryptionError("Stored token could not be decrypted") from e
