"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (ledger substrate)
    database_url: Optional[str] = None
    postgres_user: str = "medchain"
    postgres_password: str = "medchain_dev_password"
    postgres_db: str = "medchain"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Redis (Celery broker for detached writers)
    redis_url: str = "redis://localhost:6379/0"

    # Blob substrate
    blob_backend: str = "local"  # local, minio
    blob_local_path: str = "./var/blobs"
    minio_endpoint: str = "localhost:9000"
    minio_access_key: Optional[str] = None  # Required in non-dev
    minio_secret_key: Optional[str] = None  # Required in non-dev
    minio_bucket: str = "medchain-records"
    minio_use_ssl: bool = False
    max_blob_bytes: int = 50 * 1024 * 1024

    # Blob cipher
    blob_encryption_key: Optional[str] = None  # urlsafe base64 Fernet key
    secret_key: str = "dev-secret-key-change-in-production"
    local_encryption_salt: Optional[str] = None

    # Environment
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Event sink
    event_sink: str = "logging"  # logging, webhook
    event_webhook_url: Optional[str] = None
    event_webhook_secret: Optional[str] = None
    webhook_timeout_seconds: int = 10

    # Access log writer
    access_log_writer: str = "thread"  # thread, celery
    access_log_workers: int = 2
    access_log_max_retries: int = 3

    # Records
    max_clinical_payload_bytes: int = 64 * 1024

    # Registration authorities
    patient_registrar_org: str = "Org1MSP"
    provider_registrar_org: str = "Org2MSP"

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development or test."""
        return self.environment.lower() in ("development", "test", "dev")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.is_development:
            return
        if not self.blob_encryption_key:
            raise ValueError(
                "BLOB_ENCRYPTION_KEY is required in production. "
                "Key derivation from SECRET_KEY is for development only."
            )
        if self.blob_backend == "minio" and (not self.minio_access_key or not self.minio_secret_key):
            raise ValueError(
                "MINIO_ACCESS_KEY and MINIO_SECRET_KEY are required in production. "
                "Do not use default credentials."
            )
        if self.event_sink == "webhook" and not self.event_webhook_secret:
            raise ValueError("EVENT_WEBHOOK_SECRET is required when EVENT_SINK=webhook.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
