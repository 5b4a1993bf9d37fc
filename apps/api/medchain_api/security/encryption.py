"""Symmetric cipher for record blobs."""

import base64
import binascii
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from medchain_api.errors import BlobIntegrityError
from medchain_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def derive_key(secret: str, salt: str) -> bytes:
    """Derive a Fernet key from a secret and a per-installation salt."""
    # Decode salt from base64 or use as-is
    try:
        salt_bytes = base64.b64decode(salt, validate=True)
    except (binascii.Error, ValueError):
        salt_bytes = salt.encode()[:32].ljust(32, b"\0")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt_bytes,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


class BlobCipher:
    """Fernet (AES-128-CBC + HMAC-SHA256) encryption of record contents.

    Key management is external: the key is either configured directly or
    derived from ``secret_key`` and ``local_encryption_salt`` in development.
    """

    def __init__(self, key: Optional[bytes] = None, settings: Optional[Settings] = None):
        """Initialize cipher from an explicit key or settings."""
        if key is None:
            key = self._key_from_settings(settings or get_settings())
        try:
            self._fernet = Fernet(key)
        except (ValueError, binascii.Error) as e:
            raise ValueError(f"Invalid blob encryption key: {e}") from e

    @staticmethod
    def _key_from_settings(settings: Settings) -> bytes:
        if settings.blob_encryption_key:
            return settings.blob_encryption_key.encode()

        if not settings.is_development:
            raise ValueError(
                f"Derived blob keys are not allowed in {settings.environment} environment. "
                "Set BLOB_ENCRYPTION_KEY."
            )
        if not settings.local_encryption_salt:
            raise ValueError(
                "LOCAL_ENCRYPTION_SALT required when BLOB_ENCRYPTION_KEY is not set. "
                "Generate a random 32-byte salt per installation."
            )
        logger.info("Deriving blob encryption key from SECRET_KEY")
        return derive_key(settings.secret_key, settings.local_encryption_salt)

    @staticmethod
    def generate_key() -> bytes:
        """Generate a fresh key."""
        return Fernet.generate_key()

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt plaintext bytes."""
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt ciphertext bytes.

        Raises:
            BlobIntegrityError: If the ciphertext was altered or encrypted under another key
        """
        try:
            return self._fernet.decrypt(ciphertext)
        except InvalidToken as e:
            raise BlobIntegrityError("Ciphertext failed authentication") from e
