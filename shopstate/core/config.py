"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
"""

import json
from pathlib import Path
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "ShopState"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    DEV_MODE: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8600

    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///./data/shopstate.db"
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:5173", "http://localhost:3000"]

    # Auth collaborator (storefront REST API)
    AUTH_API_URL: str = "http://localhost:5000/api/v1"
    AUTH_API_TIMEOUT: float = 10.0

    # Session and browsing state
    SESSION_LIFETIME_HOURS: int = 72
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 24 * 30
    LIVENESS_CHECK_INTERVAL_SECONDS: float = 30.0
    MAX_ACTIVE_PROFILES: int = 1000
    STORAGE_QUOTA_BYTES: int = 5 * 1024 * 1024
    SEARCH_HISTORY_LIMIT: int = 10
    VIEWED_PRODUCTS_LIMIT: int = 20
    ACTIVITY_UPDATE_INTERVAL_SECONDS: int = 30

    # Token encryption at rest (SECURE_TOKEN_STORAGE flag)
    ENCRYPTION_KDF_ITERATIONS: int = 300_000
    ENCRYPTION_SALT: str = "shopstate-token-salt"

    # Rate limiting configuration
    RATE_LIMIT_ENABLED: bool = True
    rate_limit_auth_endpoints: str = "10/minute"
    rate_limit_write_endpoints: str = "60/minute"
    rate_limit_read_endpoints: str = "100/minute"

    # Optional Redis URL for distributed rate limiting
    # When set, rate limits will be shared across multiple instances
    redis_url: Optional[str] = None

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def validate_cors_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return cls.parse_cors_origins(value)
        return value

    @staticmethod
    def parse_cors_origins(value: str) -> List[str]:
        """Parse CORS origins from a JSON list or a comma separated string."""
        value = value.strip()
        if value.startswith("["):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [str(origin) for origin in parsed]
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    def model_post_init(self, __context: Any) -> None:
        # Make sure the sqlite data directory exists before the engine connects
        if self.DATABASE_URL.startswith("sqlite:///") and ":memory:" not in self.DATABASE_URL:
            db_path = Path(self.DATABASE_URL[len("sqlite:///"):])
            db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def session_lifetime_ms(self) -> int:
        return self.SESSION_LIFETIME_HOURS * 60 * 60 * 1000


# Global settings instance
settings = Settings()
