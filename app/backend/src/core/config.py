"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./invoice.db", alias="DATABASE_URL"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    jwt_secret_key: str = Field(
        default="change-me-in-production", alias="JWT_SECRET"
    )
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=7 * 24 * 60, alias="ACCESS_TOKEN_EXPIRE_MINUTES"
    )

    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    aws_s3_bucket: str = Field(default="local", alias="AWS_S3_BUCKET_NAME")
    aws_access_key_id: str | None = Field(
        default=None, alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: str | None = Field(
        default=None, alias="AWS_SECRET_ACCESS_KEY"
    )
    local_storage_path: str = Field(
        default="/tmp/invoice-intelligence", alias="LOCAL_STORAGE_PATH"
    )

    google_application_credentials: str | None = Field(
        default=None, alias="GOOGLE_APPLICATION_CREDENTIALS"
    )
    google_drive_base_folder_id: str | None = Field(
        default=None, alias="GOOGLE_DRIVE_BASE_FOLDER_ID"
    )
    # JSON mapping of shop id -> {"unprocessed"|"processed"|"failed": folder id}
    drive_folder_map: dict[str, dict[str, str]] = Field(
        default_factory=dict, alias="GOOGLE_DRIVE_FOLDER_MAP"
    )

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4", alias="OPENAI_MODEL")
    perplexity_api_key: str | None = Field(
        default=None, alias="PERPLEXITY_API_KEY"
    )
    perplexity_model: str = Field(
        default="llama-3.1-sonar-small-128k-online", alias="PERPLEXITY_MODEL"
    )
    perplexity_timeout_seconds: float = Field(
        default=30.0, alias="PERPLEXITY_TIMEOUT_SECONDS"
    )

    max_retry_attempts: int = Field(default=3, alias="MAX_RETRY_ATTEMPTS")
    stale_lock_minutes: int = Field(default=30, alias="STALE_LOCK_MINUTES")
    worker_poll_interval_seconds: float = Field(
        default=5.0, alias="WORKER_POLL_INTERVAL_SECONDS"
    )
    trend_history_limit: int = Field(default=10, alias="TREND_HISTORY_LIMIT")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
