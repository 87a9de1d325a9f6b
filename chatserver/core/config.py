"""
Application configuration using 12-factor environment variables.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="WhatsApp Web Clone")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Database
    database_url: str = Field(default="sqlite:///./data/whatsapp.db")

    # Ingestion
    payload_dir: str = Field(default="./payloads", description="Directory scanned for webhook payload files")
    ingest_on_startup: bool = Field(default=False, description="Process payload_dir once when the server starts")
    business_phone_number: str = Field(default="918329446654")
    business_display_name: str = Field(default="Business")

    # Live webhook
    webhook_secret: Optional[str] = Field(default=None, description="HMAC-SHA256 app secret for webhook validation")
    webhook_verify_token: Optional[str] = Field(default=None, description="Token echoed back during subscription")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    @property
    def is_webhook_secret_configured(self) -> bool:
        """Check if webhook secret is properly configured."""
        return bool(self.webhook_secret and len(self.webhook_secret) > 0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
