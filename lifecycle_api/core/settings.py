from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application-level settings for the FastAPI service.

    This is separate from lifecycle_api.db.config.Settings, which focuses on the database layer.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="Lifecycle API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Multi-tenant backend where business entities move through lifecycle "
            "states under capability-based authorization."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Comma-separated list or JSON array of allowed origins. Default: *",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"])

    # Startup behavior
    CREATE_TABLES_ON_STARTUP: bool = Field(
        default=True,
        description="If true, create missing tables from the ORM metadata at app startup.",
    )
    AUTO_SEED: bool = Field(
        default=False,
        description="If true, seed a default organisation, admin role and admin user.",
    )
    DEFAULT_ORGANISATION_NAME: str = Field(default="Default organisation")
    DEFAULT_ADMIN_EMAIL: str = Field(default="admin@example.com")
    DEFAULT_ADMIN_PASSWORD: str = Field(default="change-me")

    # Tokens
    JWT_SECRET_KEY: str = Field(default="dev-secret-change-me")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60)

    # Attachments
    ATTACHMENT_ALLOWED_EXTENSIONS: List[str] = Field(
        default_factory=lambda: ["pdf", "doc", "docx", "png", "jpg", "jpeg"]
    )
    MAX_FILE_SIZE_MB: float = Field(default=10, description="Attachment size ceiling in megabytes")
    ATTACHMENT_URL_EXPIRES_SECONDS: int = Field(default=3600, description="Lifetime of attachment download links")

    # Binary object store
    STORAGE_BACKEND: str = Field(default="s3", description="s3 or memory")
    S3_BUCKET_NAME: str = Field(default="lifecycle-files")
    AWS_DEFAULT_REGION: Optional[str] = Field(default=None)

    # Signing provider
    SIGNING_BASE_URL: Optional[str] = Field(
        default=None, description="Base URL of the e-signature provider used for grant acceptance"
    )

    # Environment label
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS origins.
        """
        if v is None:
            return ["*"]
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return parts or ["*"]
        if isinstance(v, list):
            return v or ["*"]
        return ["*"]

    @field_validator("ATTACHMENT_ALLOWED_EXTENSIONS", mode="before")
    @classmethod
    def _parse_extensions(cls, v):
        if isinstance(v, str):
            v = [p for p in v.split(",")]
        return [p.strip().lower().lstrip(".") for p in v if p and p.strip()]


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Return the process-wide AppSettings populated from environment variables."""
    return AppSettings()
