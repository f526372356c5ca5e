"""
Environment-driven configuration for the Fast! backend.
"""
from functools import lru_cache
from typing import Annotated, Any, FrozenSet, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_CORS_ORIGINS = [
    "capacitor://localhost",
    "http://localhost",
    "http://localhost:5173",
    "https://fast-fasting-app.netlify.app",
]


def _split_csv(value: Any) -> List[str]:
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [item.strip() for item in items if item and item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    # ADMIN_EMAILS, comma-separated; an empty set means nobody is an admin
    admin_emails: Annotated[FrozenSet[str], NoDecode] = frozenset()
    # CORS_ORIGINS, comma-separated
    cors_origins: Annotated[List[str], NoDecode] = DEFAULT_CORS_ORIGINS
    log_level: str = "INFO"

    @field_validator("admin_emails", mode="before")
    @classmethod
    def _parse_admin_emails(cls, value):
        return frozenset(email.lower() for email in _split_csv(value))

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value):
        return _split_csv(value) or DEFAULT_CORS_ORIGINS

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        return (value or "INFO").upper()

    def is_admin(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in self.admin_emails


@lru_cache
def get_settings() -> Settings:
    """Read settings once per process. Tests override this dependency."""
    return Settings()
