"""
Application settings.

Loads configuration from environment variables (and an optional .env file)
using pydantic-settings. Business parameters such as the commission rate live
in the settings table instead, see ledger.settings_store.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./referzone.db"
    database_echo: bool = False

    # Tokens
    secret_key: str = "change-this-secret-in-production"
    token_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=60 * 24 * 7, gt=0)

    # Outbound e-mail (Brevo transactional API)
    brevo_api_key: Optional[str] = None
    brevo_api_url: str = "https://api.brevo.com/v3/smtp/email"
    email_from: str = "noreply@absreferzone.com"
    email_from_name: str = "ABS REFERZONE"
    notify_timeout_seconds: float = 10.0
    frontend_url: str = "http://localhost:5000"

    # Default admin, created on startup when both are set
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_name: str = "ABS REFERZONE Admin"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
