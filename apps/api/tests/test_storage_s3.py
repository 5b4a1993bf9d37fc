"""Tests for the MinIO blob substrate."""

from unittest.mock import MagicMock

import pytest
from minio.error import S3Error

from medchain_api.errors import BlobNotFoundError, StorageError
from medchain_api.storage.local import ciphertext_address
from medchain_api.storage.s3 import MinioSubstrate


def _s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message="test",
        resource="/medchain-records/blobs/x",
        request_id="req",
        host_id="host",
        response=MagicMock(),
    )


@pytest.fixture
def mock_minio_client():
    """Mock MinIO client."""
    client = MagicMock()
    client.bucket_exists.return_value = True
    return client


def test_creates_missing_bucket(mock_minio_client):
    """Test that the bucket is created on startup."""
    mock_minio_client.bucket_exists.return_value = False
    MinioSubstrate(client=mock_minio_client, bucket="records")
    mock_minio_client.make_bucket.assert_called_once_with("records")


def test_put_uploads_under_ciphertext_address(mock_minio_client):
    """Test object naming and upload arguments."""
    substrate = MinioSubstrate(client=mock_minio_client, bucket="records")
    address = substrate.put(b"ciphertext")

    assert address == ciphertext_address(b"ciphertext")
    args, kwargs = mock_minio_client.put_object.call_args
    assert args[0] == "records"
    assert args[1] == f"blobs/{address}"
    assert kwargs["length"] == len(b"ciphertext")


def test_get_reads_and_releases_response(mock_minio_client):
    """Test download and connection release."""
    response = MagicMock()
    response.read.return_value = b"ciphertext"
    mock_minio_client.get_object.return_value = response
    substrate = MinioSubstrate(client=mock_minio_client, bucket="records")

    assert substrate.get("a" * 64) == b"ciphertext"
    response.close.assert_called_once()
    response.release_conn.assert_called_once()


def test_get_missing_object_raises_not_found(mock_minio_client):
    """Test NoSuchKey mapping."""
    mock_minio_client.get_object.side_effect = _s3_error("NoSuchKey")
    substrate = MinioSubstrate(client=mock_minio_client, bucket="records")

    with pytest.raises(BlobNotFoundError):
        substrate.get("a" * 64)


def test_other_s3_errors_raise_storage_error(mock_minio_client):
    """Test that substrate failures surface as STORAGE_ERROR."""
    mock_minio_client.put_object.side_effect = _s3_error("AccessDenied")
    substrate = MinioSubstrate(client=mock_minio_client, bucket="records")

    with pytest.raises(StorageError) as exc_info:
        substrate.put(b"ciphertext")
    assert not isinstance(exc_info.value, BlobNotFoundError)


def test_invalid_address_never_reaches_bucket(mock_minio_client):
    """Test address validation."""
    substrate = MinioSubstrate(client=mock_minio_client, bucket="records")

    with pytest.raises(BlobNotFoundError):
        substrate.get("../secrets")
    mock_minio_client.get_object.assert_not_called()
    assert substrate.exists("../secrets") is False
