"""
Queue and exchange definitions.
"""

from dataclasses import dataclass

from shared.messaging.config import MessagingSettings


@dataclass(frozen=True)
class QueueConfig:
    """Queue configuration."""

    name: str
    durable: bool = True
    auto_delete: bool = False
    exchange: str | None = None
    routing_key: str | None = None


def booster_events_queue(settings: MessagingSettings) -> QueueConfig:
    """
    Queue carrying backend booster events.

    Args:
        settings: Messaging settings

    Returns:
        Queue configuration bound to the events exchange
    """
    return QueueConfig(
        name=settings.events_queue,
        exchange=settings.events_exchange,
        routing_key=settings.events_routing_key,
    )
