"""Tests for the blob cipher."""

from unittest.mock import MagicMock

import pytest

from medchain_api.errors import BlobIntegrityError
from medchain_api.security.encryption import BlobCipher, derive_key


def test_encrypt_decrypt_round_trip():
    """Test that decrypt inverts encrypt."""
    cipher = BlobCipher(key=BlobCipher.generate_key())
    ciphertext = cipher.encrypt(b"patient notes")

    assert b"patient notes" not in ciphertext
    assert cipher.decrypt(ciphertext) == b"patient notes"


def test_decrypt_with_other_key_fails_integrity():
    """Test that a foreign key is reported as an integrity failure."""
    ciphertext = BlobCipher(key=BlobCipher.generate_key()).encrypt(b"data")

    with pytest.raises(BlobIntegrityError) as exc_info:
        BlobCipher(key=BlobCipher.generate_key()).decrypt(ciphertext)
    assert exc_info.value.code == "STORAGE_ERROR"


def test_derive_key_is_stable_per_salt():
    """Test PBKDF2 derivation."""
    assert derive_key("secret", "salt-a") == derive_key("secret", "salt-a")
    assert derive_key("secret", "salt-a") != derive_key("secret", "salt-b")


def test_configured_key_is_used():
    """Test that BLOB_ENCRYPTION_KEY takes precedence."""
    key = BlobCipher.generate_key()
    settings = MagicMock()
    settings.blob_encryption_key = key.decode()

    ciphertext = BlobCipher(settings=settings).encrypt(b"data")
    assert BlobCipher(key=key).decrypt(ciphertext) == b"data"


def test_derived_key_refused_outside_development():
    """Test that production requires an explicit key."""
    settings = MagicMock()
    settings.blob_encryption_key = None
    settings.is_development = False
    settings.environment = "production"

    with pytest.raises(ValueError, match="BLOB_ENCRYPTION_KEY"):
        BlobCipher(settings=settings)


def test_derived_key_requires_salt():
    """Test that development derivation needs a salt."""
    settings = MagicMock()
    settings.blob_encryption_key = None
    settings.is_development = True
    settings.local_encryption_salt = None

    with pytest.raises(ValueError, match="LOCAL_ENCRYPTION_SALT"):
        BlobCipher(settings=settings)


def test_invalid_key_rejected():
    """Test that malformed keys fail fast."""
    with pytest.raises(ValueError):
        BlobCipher(key=b"not-a-fernet-key")
