"""
Encryption of bearer tokens at rest (``SECURE_TOKEN_STORAGE`` flag).
"""

import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shopstate.core.config import settings

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"


class TokenEncryptionError(Exception):
    """Raised when a token cannot be encrypted"""


def _kdf_iterations(value: int) -> int:
    # Enforce the recommended floor and a sane ceiling
    if value < 100_000:
        logger.warning(f"KDF iterations {value} below recommended minimum, using 300,000")
        return 300_000
    if value > 10_000_000:
        logger.warning(f"KDF iterations {value} exceeds maximum, using 1,000,000")
        return 1_000_000
    return value


class TokenCipher:
    """Fernet cipher keyed from the application's secret key."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        salt: Optional[str] = None,
        iterations: Optional[int] = None,
    ):
        secret = (secret_key or settings.SECRET_KEY).encode("utf-8")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=(salt or settings.ENCRYPTION_SALT).encode("utf-8"),
            iterations=_kdf_iterations(iterations or settings.ENCRYPTION_KDF_ITERATIONS),
        )
        self.cipher = Fernet(base64.urlsafe_b64encode(kdf.derive(secret)))

    def encrypt(self, token: str) -> str:
        """
        Encrypt a bearer token for storage.

        Returns:
            ``enc:``-prefixed Fernet token

        Raises:
            TokenEncryptionError: If encryption fails
        """
        try:
            return ENCRYPTED_PREFIX + self.cipher.encrypt(token.encode("utf-8")).decode("utf-8")
        except Exception as e:
            logger.error("Failed to encrypt token", extra={"error_type": type(e).__name__})
            # Never fall back to plaintext storage
            raise TokenEncryptionError(f"Token encryption failed: {e}") from e

    def decrypt(self, stored: str) -> Optional[str]:
        """
        Decrypt a stored token. Values without the ``enc:`` prefix are returned as is.

        Returns:
            The plain token, or None if decryption fails
        """
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        try:
            return self.cipher.decrypt(stored[len(ENCRYPTED_PREFIX):].encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Failed to decrypt stored token", extra={"error_type": "InvalidToken"})
            return None
