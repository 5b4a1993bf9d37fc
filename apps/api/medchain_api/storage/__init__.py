"""Encrypted blob storage."""

from medchain_api.storage.service import BlobStore, BlobSubstrate, build_blob_store, build_substrate

__all__ = ["BlobStore", "BlobSubstrate", "build_blob_store", "build_substrate"]
