"""Configuration for HTTP service clients."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HTTPClientSettings(BaseSettings):
    """HTTP client configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Booster Service
    booster_service_url: str = Field(
        "http://localhost:8080", description="Base URL of the booster backend"
    )
    booster_service_timeout: float = Field(10.0, gt=0, description="Request timeout in seconds")
    booster_service_max_retries: int = Field(3, ge=1, le=10, description="Attempts per request")
    booster_service_retry_delay: float = Field(
        0.5, ge=0, description="Base delay between attempts in seconds"
    )


@lru_cache
def get_http_client_settings() -> HTTPClientSettings:
    """
    Get cached HTTP client settings instance.

    Returns:
        HTTPClientSettings: Cached settings instance
    """
    return HTTPClientSettings()
