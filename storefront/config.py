"""
Configuration and settings for the storefront backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # One of "memory", "jsonbin", "object", "sql". Empty means auto-detect
    # from whichever backend is configured below.
    store_backend: Optional[str] = Field(default=None)
    use_in_memory_backends: bool = Field(default=False)

    # JSON document store (JSONBin v3 API)
    jsonbin_bin_id: Optional[str] = Field(default=None)
    jsonbin_api_key: Optional[str] = Field(default=None)
    jsonbin_base_url: str = Field(default="https://api.jsonbin.io/v3")

    # Relational store (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible object storage
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    s3_object_key: str = Field(default="storefront/dataset.json")
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Cache
    redis_url: Optional[str] = Field(default=None)
    redis_cache_prefix: str = Field(default="storefront:cache:")
    products_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    categories_cache_ttl_seconds: float = Field(default=60.0, ge=0)

    # Remote store calls
    store_max_attempts: int = Field(default=3, ge=3, le=5)
    store_backoff_step_seconds: float = Field(default=1.0, ge=0)
    store_backoff_max_seconds: float = Field(default=3.0, ge=0)
    store_request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_payload_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    # Auth
    session_secret: Optional[str] = Field(default=None)
    token_ttl_seconds: int = Field(default=900, gt=0)
    allow_legacy_token: bool = Field(default=False)
    default_admin_username: str = Field(default="admin")
    default_admin_password: str = Field(default="admin123")
    provision_credentials_on_startup: bool = Field(default=True)

    # uvicorn
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    @field_validator("default_admin_password")
    @classmethod
    def _password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt rejects passwords longer than 72 bytes.
        if len(value) < 6 or len(value.encode("utf-8")) > 72:
            raise ValueError("default_admin_password must be 6 characters to 72 bytes")
        return value

    def resolved_store_backend(self) -> str:
        """Return the store backend to use, detecting it when not set."""
        if self.use_in_memory_backends:
            return "memory"
        if self.store_backend:
            return self.store_backend.lower()
        if self.database_url:
            return "sql"
        if self.jsonbin_bin_id and self.jsonbin_api_key:
            return "jsonbin"
        if self.s3_bucket:
            return "object"
        return "memory"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
