"""
RabbitMQ messaging utilities.
"""

from shared.messaging.config import MessagingSettings, get_messaging_settings
from shared.messaging.consumer import MessageConsumer
from shared.messaging.queues import QueueConfig, booster_events_queue

__all__ = [
    "MessageConsumer",
    "MessagingSettings",
    "get_messaging_settings",
    "QueueConfig",
    "booster_events_queue",
]
