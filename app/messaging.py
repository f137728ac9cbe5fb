import json
import logging
from typing import Optional

import aio_pika

logger = logging.getLogger(__name__)

PAYMENT_EXCHANGE = "payment_exchange"
STATUS_CHANGED_ROUTING_KEY = "payment.status_changed"


class EventPublisher:
    """Publishes payment notifications to a RabbitMQ topic exchange."""

    def __init__(self, url: Optional[str], exchange_name: str = PAYMENT_EXCHANGE):
        self.url = url
        self.exchange_name = exchange_name
        self.connection = None
        self.channel = None
        self.exchange = None

    @property
    def connected(self) -> bool:
        return self.exchange is not None

    async def connect(self):
        if not self.url:
            logger.info("RABBITMQ_URL not set; payment notifications disabled.")
            return
        try:
            self.connection = await aio_pika.connect_robust(self.url)
            self.channel = await self.connection.channel()
            self.exchange = await self.channel.declare_exchange(
                self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
            )
            logger.info("RabbitMQ setup complete.")
        except Exception as e:
            logger.error("Error setting up RabbitMQ: %s", e)
            self.exchange = None

    async def close(self):
        if self.connection is not None:
            await self.connection.close()
        self.connection = None
        self.channel = None
        self.exchange = None

    async def publish(self, routing_key: str, message_data: dict) -> bool:
        if not self.connected:
            logger.debug("RabbitMQ channel not available. Skipping %s.", routing_key)
            return False

        message = aio_pika.Message(
            json.dumps(message_data).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        try:
            await self.exchange.publish(message, routing_key=routing_key)
            logger.info("Published event to %s: %s", routing_key, message_data["event_type"])
            return True
        except Exception as e:
            logger.error("Error publishing event: %s", e)
            return False
