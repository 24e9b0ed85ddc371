"""
Booster event worker.

Consumes backend booster events from RabbitMQ and feeds them into an
OperationController's ingestion pipeline.
"""

import asyncio
import logging
from typing import Any

from boosters import OperationController
from shared.clients import BoosterServiceClient
from shared.config import configure_from_settings, get_settings
from shared.messaging import MessageConsumer, MessagingSettings, booster_events_queue

logger = logging.getLogger(__name__)


class BoosterEventWorker:
    """
    Worker bridging the event stream to the controller.

    Every decoded message is handed to the controller's EventIngestor; the
    ingestor records malformed payloads as diagnostics instead of raising.
    """

    def __init__(
        self,
        controller: OperationController,
        messaging_settings: MessagingSettings | None = None,
        consumer: MessageConsumer | None = None,
    ):
        """
        Initialize booster event worker.

        Args:
            controller: Controller owning the queue state
            messaging_settings: RabbitMQ messaging settings
            consumer: Message consumer (built from settings if omitted)
        """
        self.controller = controller
        self.messaging_settings = messaging_settings or MessagingSettings()
        self.consumer = consumer or MessageConsumer(
            url=self.messaging_settings.url,
            heartbeat=self.messaging_settings.heartbeat,
        )
        self.messages_handled = 0

    async def start(self) -> None:
        """Connect and consume until stopped."""
        queue_config = booster_events_queue(self.messaging_settings)
        logger.info(f"Starting booster event worker on queue {queue_config.name}")

        await self.consumer.connect()
        await self.consumer.run(
            queue_config=queue_config,
            handler=self.handle_message,
            prefetch_count=self.messaging_settings.prefetch_count,
        )

    async def stop(self) -> None:
        """Stop consuming and release the controller's timers."""
        logger.info("Stopping booster event worker")
        self.consumer.stop()
        await self.controller.aclose()

    async def handle_message(self, message_data: dict[str, Any]) -> None:
        """
        Handle one decoded event message.

        Args:
            message_data: Raw backend event payload
        """
        await self.controller.ingestor.handle_message(message_data)
        self.messages_handled += 1

    @property
    def is_running(self) -> bool:
        """Check if worker is currently consuming."""
        return self.consumer.is_running


async def main() -> None:
    """Main entry point for the worker."""
    configure_from_settings(get_settings())

    backend = BoosterServiceClient()
    controller = OperationController(backend=backend)
    worker = BoosterEventWorker(controller)

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        await worker.stop()
        await backend.close()


if __name__ == "__main__":
    asyncio.run(main())
