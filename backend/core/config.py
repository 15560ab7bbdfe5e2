# backend/core/config.py

"""
Configuration management for the sales analytics backend.

Settings are read from environment variables (or a local .env file) so that
proxy credentials never live in the codebase.
"""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings with environment variable support.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # Environment Settings
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # API
    cors_origins: List[str] = ["http://localhost:3000"]

    # Tenant database proxy
    database_proxy_url: str = "http://localhost:54321/functions/v1/company-database"
    database_proxy_api_key: str = ""
    database_proxy_timeout_seconds: float = 30.0

    # Redis Configuration (shared analytics cache across workers)
    redis_url: Optional[str] = None

    # Analytics engine
    analytics_cache_ttl_seconds: int = 3600  # 1 hour staleness window
    analytics_capability_cache_ttl_seconds: int = 3600
    analytics_max_row_level_rows: int = 50000
    analytics_ranking_limit: int = 10
    analytics_filter_option_client_limit: int = 100

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def redis_enabled(self) -> bool:
        """Check if Redis is configured for the shared cache."""
        return self.redis_url is not None


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Returns:
        Settings instance with environment variables loaded
    """
    return Settings()


# Export settings instance for easy import
settings = get_settings()


def validate_production_config(config: Settings = settings):
    """Validate configuration for production deployment."""
    if config.is_production:
        security_issues = []

        if not config.database_proxy_api_key:
            security_issues.append("DATABASE_PROXY_API_KEY is not set")

        if "localhost" in config.database_proxy_url:
            security_issues.append("Database proxy URL appears to use localhost")

        if config.debug:
            security_issues.append("DEBUG is enabled in production")

        if security_issues:
            raise ValueError(
                f"Production security issues detected: {', '.join(security_issues)}"
            )


# Validate on import if in production
if settings.is_production:
    validate_production_config()
