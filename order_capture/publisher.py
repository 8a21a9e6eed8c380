"""Publishers that notify downstream consumers of captured orders."""

import random
import time
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlparse

import pika
from pika.exceptions import AMQPError
from proton import Message, ProtonException
from proton.utils import BlockingConnection

from .config import QueueKind, Settings
from .errors import ConfigurationError, QueuePublishError
from .logger import logger
from .schemas import Order
from .telemetry import Telemetry

ORDER_QUEUE_NAME = "order"
CONTENT_TYPE = "application/json"
PERSISTENT_DELIVERY_MODE = 2

EVENT_HUB_PARTITIONS = 3
SEND_TIMEOUT_SECONDS = 5

DEPENDENCY_TYPE = "AMQP"


class OrderPublisher(ABC):
    """Sends one notification per order to a queue backend.

    Attributes:
        kind (QueueKind): Backend variant, also the dependency name in telemetry.
    """

    kind: QueueKind

    def __init__(self, settings: Settings, telemetry: Telemetry):
        self._settings = settings
        self._telemetry = telemetry

    def message_body(self, order_id: str) -> str:
        """Notification text.

        Existing consumers parse this exact text, doubled braces and single
        quotes included, so it is not real JSON.
        """
        return "{{'order': '%s', 'source': '%s'}}" % (order_id, self._settings.team_name)

    @abstractmethod
    def publish(self, order: Order) -> None:
        """Deliver a notification for the order, at most once.

        Raises:
            QueuePublishError: If the backend could not be reached or refused the message.
        """

    def close(self) -> None:
        """Release resources held between publishes."""

    def _fail(self, order: Order, step: str, error: Exception, start_time: float) -> QueuePublishError:
        logger.error(f"{step} failed for order {order.id} on {self.kind.value}: {error}")
        self._telemetry.record_exception(error)
        self._record_dependency(False, start_time)
        return QueuePublishError(f"{step}: {error}", order_id=order.id)

    def _record_dependency(self, success: bool, start_time: float) -> None:
        self._telemetry.record_dependency(
            self.kind.value,
            DEPENDENCY_TYPE,
            self._settings.amqp_url,
            success,
            "Send message",
            start_time,
            time.time(),
        )


class LegacyQueuePublisher(OrderPublisher):
    """AMQP 0.9.1 publisher (RabbitMQ).

    Each publish opens its own connection; a blocking pika connection must not
    be shared between request threads.
    """

    kind = QueueKind.LEGACY

    def publish(self, order: Order) -> None:
        start_time = time.time()
        body = self.message_body(order.id)

        try:
            connection = pika.BlockingConnection(pika.URLParameters(self._settings.amqp_url))
        except (AMQPError, ValueError) as e:
            raise self._fail(order, "Creating client", e, start_time) from e

        try:
            channel = connection.channel()
            channel.queue_declare(queue=ORDER_QUEUE_NAME, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=ORDER_QUEUE_NAME,
                body=body,
                properties=pika.BasicProperties(
                    delivery_mode=PERSISTENT_DELIVERY_MODE,
                    content_type=CONTENT_TYPE,
                ),
            )
        except AMQPError as e:
            raise self._fail(order, "Sending message", e, start_time) from e
        finally:
            if connection.is_open:
                connection.close()

        self._record_dependency(True, start_time)
        logger.info(f"Sent to AMQP 0.9.1 (RabbitMQ) - True, {self._settings.amqp_url}: {body}")


class StreamQueuePublisher(OrderPublisher):
    """AMQP 1.0 publisher (Event Hubs).

    Spreads orders over the hub's partitions by sending each one to a randomly
    chosen ``<hub>/partitions/<N>`` address.
    """

    kind = QueueKind.STREAM

    def __init__(self, settings: Settings, telemetry: Telemetry, rng: Optional[random.Random] = None):
        super().__init__(settings, telemetry)
        self._rng = rng or random.Random()

    def target_address(self) -> str:
        partition = self._rng.randrange(0, EVENT_HUB_PARTITIONS)
        return f"{self._settings.event_hub_name}/partitions/{partition}"

    def publish(self, order: Order) -> None:
        start_time = time.time()
        body = self.message_body(order.id)

        try:
            connection = BlockingConnection(self._settings.amqp_url)
        except (ProtonException, ValueError) as e:
            raise self._fail(order, "Creating client", e, start_time) from e

        try:
            target = self.target_address()
            logger.info(f"AMQP URL: {self._settings.amqp_url}, Target: {target}")
            sender = connection.create_sender(target)
            try:
                sender.send(Message(body=body.encode("utf-8"), inferred=True), timeout=SEND_TIMEOUT_SECONDS)
            finally:
                sender.close()
        except (ProtonException, ValueError) as e:
            raise self._fail(order, "Sending message", e, start_time) from e
        finally:
            connection.close()

        self._record_dependency(True, start_time)
        logger.info(f"Sent to AMQP 1.0 (EventHub) - True, {self._settings.amqp_url}: {body}")


def validate_amqp_url(url: str) -> None:
    """Check the AMQP URL splits into its parts.

    An empty URL passes; the connection attempt reports it.

    Raises:
        ConfigurationError: If the URL or its port is malformed.
    """
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as e:
        raise ConfigurationError(f"Problem parsing AMQP URL {url}: {e}") from e
    logger.debug(f"AMQP host {parsed.hostname}, port {port}, path {parsed.path}")


def create_publisher(
    settings: Settings, telemetry: Telemetry, rng: Optional[random.Random] = None
) -> OrderPublisher:
    """Create the publisher for the configured queue backend.

    Args:
        settings: Resolved settings; ``queue_kind`` selects the variant.
        telemetry: Telemetry emitter shared with the store.
        rng: Randomness source for partition selection.

    Returns:
        OrderPublisher: The single active publisher.

    Raises:
        ConfigurationError: If the AMQP URL cannot be parsed.
    """
    try:
        validate_amqp_url(settings.amqp_url)
    except ConfigurationError as e:
        logger.error(str(e))
        telemetry.record_exception(e)
        raise

    if settings.queue_kind is QueueKind.STREAM:
        logger.info("Using EventHub")
        publisher = StreamQueuePublisher(settings, telemetry, rng)
    else:
        logger.info("Using RabbitMQ")
        publisher = LegacyQueuePublisher(settings, telemetry)
    logger.info(f"\tAMQP URL: {settings.amqp_url}")
    return publisher
