"""Filesystem blob substrate."""

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Union

from medchain_api.errors import BlobNotFoundError, StorageError

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def ciphertext_address(data: bytes) -> str:
    """Address assigned to a ciphertext (SHA-256 of the stored bytes)."""
    return hashlib.sha256(data).hexdigest()


class LocalSubstrate:
    """Stores ciphertext blobs in a directory, addressed by their SHA-256."""

    def __init__(self, root: Union[str, Path]):
        """Initialize substrate rooted at ``root``."""
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, address: str) -> Path:
        """Filesystem path of a blob.

        Addresses are validated so that no path traversal is possible.
        """
        if not ADDRESS_PATTERN.match(address or ""):
            raise BlobNotFoundError(f"Unknown blob address: {address!r}")
        return self.root / address[:2] / address

    def put(self, data: bytes) -> str:
        """Persist ciphertext and return its address."""
        address = ciphertext_address(data)
        path = self.path_for(address)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to write blob {address}: {e}")
            raise StorageError(f"Failed to write blob {address}: {e}") from e
        logger.debug(f"Stored blob {address} ({len(data)} bytes)")
        return address

    def get(self, address: str) -> bytes:
        """Fetch ciphertext by address."""
        path = self.path_for(address)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(f"Blob not found: {address}")
        except OSError as e:
            logger.error(f"Failed to read blob {address}: {e}")
            raise StorageError(f"Failed to read blob {address}: {e}") from e

    def exists(self, address: str) -> bool:
        try:
            return self.path_for(address).is_file()
        except BlobNotFoundError:
            return False
