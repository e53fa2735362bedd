# crosslist/core/config.py

import os
from functools import lru_cache
from typing import Annotated, List, Optional
from pydantic import BeforeValidator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_email_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [email.strip() for email in value.split(",") if email.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(email).strip() for email in value if str(email).strip()]
    return []


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./crosslist.db"

    # eBay OAuth / Sell APIs
    EBAY_CLIENT_ID: str = ""
    EBAY_CLIENT_SECRET: str = ""
    EBAY_SANDBOX_MODE: bool = False  # Change to True if in Sandbox test mode
    EBAY_MARKETPLACE_ID: str = "EBAY_US"
    EBAY_FULFILLMENT_POLICY_ID: str = ""
    EBAY_PAYMENT_POLICY_ID: str = ""
    EBAY_RETURN_POLICY_ID: str = ""
    EBAY_MERCHANT_LOCATION_KEY: str = ""

    # Reverb OAuth
    REVERB_CLIENT_ID: str = ""
    REVERB_CLIENT_SECRET: str = ""
    REVERB_USE_SANDBOX: bool = False

    # Token lifecycle
    TOKEN_REFRESH_MARGIN_MINUTES: int = 30

    # Sync orchestration
    PLATFORM_REQUEST_TIMEOUT: float = 30.0
    SYNC_MAX_ATTEMPTS: int = 3
    SYNC_RETRY_BASE_DELAY_SECONDS: int = 60
    SYNC_WORKER_POLL_INTERVAL: int = 10

    # Price research
    PRICE_RESEARCH_TIMEOUT: float = 20.0
    PRICE_RESEARCH_DEFAULT_LIMIT: int = 50
    PRICE_RESEARCH_PLATFORM: str = "ebay"

    # Notifications
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = None
    NOTIFICATION_EMAILS: Annotated[List[str], NoDecode, BeforeValidator(_parse_email_list)] = []

    # Runtime
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def async_database_url(self) -> str:
        # Convert postgresql:// to postgresql+asyncpg:// for async support
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache to force reload"""
    get_settings.cache_clear()
