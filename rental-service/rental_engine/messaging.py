import json
import logging
from typing import Any, Dict, Optional

import aio_pika

logger = logging.getLogger(__name__)


class RabbitNotifier:
    """Publishes order events to a durable topic exchange for the notification service."""

    def __init__(self, url: str, exchange_name: str = "rental_exchange"):
        self.url = url
        self.exchange_name = exchange_name
        self.connection = None
        self.channel = None
        self.exchange = None

    async def connect(self):
        self.connection = await aio_pika.connect_robust(self.url)
        self.channel = await self.connection.channel()
        self.exchange = await self.channel.declare_exchange(
            self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
        )
        logger.info(f"RabbitMQ exchange {self.exchange_name} ready.")

    async def notify(self, routing_key: str, event: Dict[str, Any]) -> None:
        if self.exchange is None:
            await self.connect()

        message = aio_pika.Message(
            json.dumps(event, default=str).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self.exchange.publish(message, routing_key=routing_key)
        logger.info(f"[Order: {event.get('order_id')}] Published {event['event_type']} to {routing_key}")

    async def close(self):
        if self.connection is not None and not self.connection.is_closed:
            await self.connection.close()
        self.connection = self.channel = self.exchange = None


class LoggingNotifier:
    """Stand-in used when notifications are disabled."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    async def notify(self, routing_key: str, event: Dict[str, Any]) -> None:
        self.log.info(f"[Order: {event.get('order_id')}] Notification {routing_key} (not delivered)")

    async def close(self):
        pass
