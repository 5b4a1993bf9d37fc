"""Tests for settings."""

import pytest

from medchain_api.settings import Settings


def test_database_url_computed_from_parts():
    """Test PostgreSQL URL assembly."""
    settings = Settings(_env_file=None, database_url=None, postgres_host="db", postgres_password="pw")
    assert settings.database_url_computed == "postgresql://medchain:pw@db:5432/medchain"


def test_explicit_database_url_wins():
    """Test DATABASE_URL precedence."""
    settings = Settings(_env_file=None, database_url="sqlite:///ledger.db")
    assert settings.database_url_computed == "sqlite:///ledger.db"


def test_environment_from_env(monkeypatch):
    """Test environment variable loading."""
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("ACCESS_LOG_WORKERS", "7")
    settings = Settings(_env_file=None)

    assert settings.is_production
    assert not settings.is_development
    assert settings.access_log_workers == 7


def test_production_requires_blob_key():
    """Test production validation."""
    settings = Settings(_env_file=None, environment="production", blob_encryption_key=None)
    with pytest.raises(ValueError, match="BLOB_ENCRYPTION_KEY"):
        settings.validate_production_settings()


def test_production_requires_webhook_secret():
    """Test that webhook events must be signed in production."""
    settings = Settings(
        _env_file=None,
        environment="production",
        blob_encryption_key="k",
        event_sink="webhook",
        event_webhook_secret=None,
    )
    with pytest.raises(ValueError, match="EVENT_WEBHOOK_SECRET"):
        settings.validate_production_settings()


def test_development_skips_validation():
    """Test that development settings are not validated."""
    Settings(_env_file=None, environment="development").validate_production_settings()
