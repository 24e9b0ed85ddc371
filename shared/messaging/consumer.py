"""
Message consumer for RabbitMQ.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import aio_pika
from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractRobustConnection

from shared.config.logging import get_logger
from shared.exceptions import MessageConsumeError, MessagingError
from shared.messaging.queues import QueueConfig

logger = get_logger(__name__)

MessageHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class MessageConsumer:
    """Consumes JSON messages from a RabbitMQ queue and hands them to a handler."""

    def __init__(self, url: str, heartbeat: int = 60):
        """
        Initialize message consumer.

        Args:
            url: RabbitMQ connection URL
            heartbeat: Heartbeat interval in seconds
        """
        self.url = url
        self.heartbeat = heartbeat
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._consumer_tags: dict[str, str] = {}
        self._running = False

    async def connect(self) -> None:
        """
        Connect to RabbitMQ server.

        Raises:
            MessagingError: If connection fails
        """
        try:
            logger.info("rabbitmq_connecting")
            self._connection = await aio_pika.connect_robust(self.url, heartbeat=self.heartbeat)
            self._channel = await self._connection.channel()
            logger.info("rabbitmq_connected")
        except Exception as e:
            logger.error("rabbitmq_connection_failed", error=str(e))
            raise MessagingError(f"Failed to connect to RabbitMQ: {e}") from e

    async def disconnect(self) -> None:
        """Disconnect from RabbitMQ server."""
        if self._channel:
            await self._channel.close()
            self._channel = None
        if self._connection:
            await self._connection.close()
            self._connection = None
        self._consumer_tags.clear()
        logger.info("rabbitmq_disconnected")

    def _get_channel(self) -> AbstractChannel:
        if not self._channel:
            raise MessagingError("Not connected to RabbitMQ")
        return self._channel

    async def _process(
        self,
        queue_name: str,
        message: AbstractIncomingMessage,
        handler: MessageHandler,
    ) -> None:
        try:
            body = json.loads(message.body.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("message_decode_failed", queue=queue_name, error=str(e))
            await message.reject(requeue=False)
            return

        try:
            await handler(body)
        except Exception:
            # Redelivery would reorder the stream; the message is dropped instead
            logger.exception("message_processing_failed", queue=queue_name)
            await message.reject(requeue=False)
            return

        await message.ack()

    async def consume(
        self,
        queue_config: QueueConfig,
        handler: MessageHandler,
        prefetch_count: int = 50,
    ) -> None:
        """
        Start consuming messages from a queue.

        Args:
            queue_config: Queue configuration
            handler: Async handler receiving each decoded message
            prefetch_count: Number of messages to prefetch

        Raises:
            MessageConsumeError: If consumption cannot start
        """
        try:
            channel = self._get_channel()
            await channel.set_qos(prefetch_count=prefetch_count)

            queue = await channel.declare_queue(
                queue_config.name,
                durable=queue_config.durable,
                auto_delete=queue_config.auto_delete,
            )
            if queue_config.exchange and queue_config.routing_key:
                exchange = await channel.declare_exchange(
                    queue_config.exchange, ExchangeType.TOPIC, durable=True
                )
                await queue.bind(exchange, routing_key=queue_config.routing_key)

            async def on_message(message: AbstractIncomingMessage) -> None:
                await self._process(queue_config.name, message, handler)

            self._consumer_tags[queue_config.name] = await queue.consume(on_message)
            logger.info("consumer_started", queue=queue_config.name, prefetch_count=prefetch_count)

        except Exception as e:
            logger.error("consumer_start_failed", queue=queue_config.name, error=str(e))
            raise MessageConsumeError(
                queue=queue_config.name,
                message=f"Failed to start consumer: {e}",
            ) from e

    async def run(
        self,
        queue_config: QueueConfig,
        handler: MessageHandler,
        prefetch_count: int = 50,
    ) -> None:
        """
        Consume until stop() is called (for worker processes).

        Args:
            queue_config: Queue configuration
            handler: Async handler receiving each decoded message
            prefetch_count: Number of messages to prefetch
        """
        self._running = True
        try:
            await self.consume(queue_config, handler, prefetch_count)
            while self._running:
                await asyncio.sleep(1)
        finally:
            self._running = False
            await self.disconnect()

    def stop(self) -> None:
        """Stop the consumer gracefully."""
        self._running = False
        logger.info("consumer_stop_requested")

    @property
    def is_running(self) -> bool:
        """Whether run() is active."""
        return self._running
