"""Encrypted, content-addressed blob store.

Plaintext is encrypted before it reaches the substrate, so confidentiality
does not depend on the substrate being trusted. Addresses are assigned by the
substrate over the ciphertext and are opaque to callers; plaintext integrity
is checked one layer up against the digest anchored on the ledger.
"""

import logging
from typing import Optional, Protocol

from medchain_api.errors import StorageError, ValidationError
from medchain_api.security.encryption import BlobCipher
from medchain_api.settings import Settings, get_settings
from medchain_api.utils import metrics

logger = logging.getLogger(__name__)


class BlobSubstrate(Protocol):
    """Location-agnostic ciphertext storage."""

    def put(self, data: bytes) -> str:
        ...

    def get(self, address: str) -> bytes:
        ...

    def exists(self, address: str) -> bool:
        ...


class BlobStore:
    """Encrypt-then-store / fetch-then-decrypt over a substrate."""

    def __init__(self, cipher: BlobCipher, substrate: BlobSubstrate, max_bytes: Optional[int] = None):
        """Initialize blob store."""
        self.cipher = cipher
        self.substrate = substrate
        self.max_bytes = max_bytes

    def store(self, plaintext: bytes) -> str:
        """Encrypt and persist ``plaintext``; return its content address.

        Raises:
            ValidationError: If the payload is not bytes or exceeds the size limit
            StorageError: If the substrate rejects the write
        """
        if not isinstance(plaintext, (bytes, bytearray)):
            raise ValidationError("Blob contents must be bytes")
        if self.max_bytes is not None and len(plaintext) > self.max_bytes:
            raise ValidationError(f"Blob exceeds {self.max_bytes} bytes")

        with metrics.blob_operation_duration.labels(operation="store").time():
            ciphertext = self.cipher.encrypt(bytes(plaintext))
            address = self.substrate.put(ciphertext)
        logger.info(f"Stored encrypted blob {address} ({len(plaintext)} plaintext bytes)")
        return address

    def retrieve(self, address: str) -> bytes:
        """Fetch and decrypt the blob at ``address``.

        Raises:
            BlobNotFoundError: Unknown address
            BlobIntegrityError: Ciphertext failed authentication
            StorageError: Any other substrate failure
        """
        if not address:
            raise StorageError("Blob address is empty")
        with metrics.blob_operation_duration.labels(operation="retrieve").time():
            ciphertext = self.substrate.get(address)
            return self.cipher.decrypt(ciphertext)


def build_substrate(settings: Optional[Settings] = None) -> BlobSubstrate:
    """Create the configured blob substrate."""
    settings = settings or get_settings()
    backend = settings.blob_backend.lower()
    if backend == "local":
        from medchain_api.storage.local import LocalSubstrate

        return LocalSubstrate(settings.blob_local_path)
    if backend == "minio":
        from medchain_api.storage.s3 import MinioSubstrate

        return MinioSubstrate(settings=settings)
    raise ValueError(f"Unknown blob backend: {settings.blob_backend}")


def build_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    """Create a blob store from settings."""
    settings = settings or get_settings()
    return BlobStore(
        cipher=BlobCipher(settings=settings),
        substrate=build_substrate(settings),
        max_bytes=settings.max_blob_bytes,
    )
