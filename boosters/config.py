"""
Configuration settings for the booster operation queue.

Defines cancellation timeouts, the grace window for events that arrive
before their operation is known, and diagnostic retention.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BoosterQueueSettings(BaseSettings):
    """Settings for the booster operation queue."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BOOSTER_QUEUE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Cancellation
    cancel_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300.0,
        description="How long to wait for a cancelled event before assuming cancellation",
    )

    # Event buffering
    event_grace_period_seconds: float = Field(
        default=10.0,
        gt=0,
        le=600.0,
        description="How long to hold events for operations that are not known yet",
    )

    max_pending_events: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Upper bound on buffered events across all unknown operations",
    )

    # Diagnostics
    diagnostics_history: int = Field(
        default=500,
        ge=1,
        le=100000,
        description="Number of reconciliation diagnostics retained in memory",
    )

    # Identifiers
    local_id_prefix: str = Field(
        default="local-",
        min_length=1,
        description="Prefix for provisional identifiers assigned before backend acknowledgment",
    )


@lru_cache
def get_booster_queue_settings() -> BoosterQueueSettings:
    """
    Get cached booster queue settings instance.

    Returns:
        BoosterQueueSettings: Cached settings instance
    """
    return BoosterQueueSettings()
