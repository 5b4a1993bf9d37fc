"""S3/MinIO blob substrate."""

import logging
from io import BytesIO
from typing import Optional

from minio import Minio
from minio.error import S3Error

from medchain_api.errors import BlobNotFoundError, StorageError
from medchain_api.settings import Settings, get_settings
from medchain_api.storage.local import ADDRESS_PATTERN, ciphertext_address

logger = logging.getLogger(__name__)


class MinioSubstrate:
    """S3-compatible blob substrate.

    Objects are keyed ``blobs/{address}`` where the address is the SHA-256 of
    the ciphertext. The bucket may be untrusted; only ciphertext is written.
    """

    def __init__(
        self,
        client: Optional[Minio] = None,
        bucket: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize substrate with an explicit client or from settings."""
        settings = settings or get_settings()
        self.bucket = bucket or settings.minio_bucket
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_use_ssl,
        )
        self._ensure_bucket()

    def _ensure_bucket(self):
        """Ensure bucket exists."""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"Created bucket: {self.bucket}")
        except S3Error as e:
            raise StorageError(f"Failed to ensure bucket {self.bucket}: {e}") from e

    @staticmethod
    def object_key(address: str) -> str:
        """Object key for an address (validated, no traversal possible)."""
        if not ADDRESS_PATTERN.match(address or ""):
            raise BlobNotFoundError(f"Unknown blob address: {address!r}")
        return f"blobs/{address}"

    def put(self, data: bytes) -> str:
        """Upload ciphertext and return its address."""
        address = ciphertext_address(data)
        object_key = self.object_key(address)
        try:
            self.client.put_object(
                self.bucket,
                object_key,
                BytesIO(data),
                length=len(data),
                content_type="application/octet-stream",
            )
        except S3Error as e:
            logger.error(f"Failed to upload object {object_key}: {e}")
            raise StorageError(f"Failed to upload blob {address}: {e}") from e
        logger.debug(f"Uploaded object: {object_key} ({len(data)} bytes)")
        return address

    def get(self, address: str) -> bytes:
        """Download ciphertext by address."""
        object_key = self.object_key(address)
        response = None
        try:
            response = self.client.get_object(self.bucket, object_key)
            return response.read()
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise BlobNotFoundError(f"Blob not found: {address}")
            logger.error(f"Failed to retrieve object {object_key}: {e}")
            raise StorageError(f"Failed to retrieve blob {address}: {e}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def exists(self, address: str) -> bool:
        try:
            self.client.stat_object(self.bucket, self.object_key(address))
            return True
        except (S3Error, BlobNotFoundError):
            return False
