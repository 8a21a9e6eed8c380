"""Entry points that persist orders and publish order notifications."""

import random
from typing import Optional

from bson import ObjectId

from .config import Settings
from .logger import logger
from .publisher import OrderPublisher, create_publisher
from .schemas import ORDER_STATUS_OPEN, PRODUCT_PARTITIONS, SOURCE_PLACEHOLDER, Order
from .store import OrderStore
from .telemetry import Telemetry, order_captured_event


class OrderService:
    """Process-wide context holding the store, the publisher and telemetry.

    ``persist`` and ``publish`` are independent: there is no transaction
    between them, so an order can end up stored but not announced, or the
    other way round.
    """

    def __init__(
        self,
        settings: Settings,
        telemetry: Telemetry,
        store: OrderStore,
        publisher: OrderPublisher,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.telemetry = telemetry
        self.store = store
        self.publisher = publisher
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings, rng: Optional[random.Random] = None) -> "OrderService":
        """Build and connect every component.

        Args:
            settings: Resolved settings.
            rng: Randomness source shared by product and partition selection.

        Returns:
            OrderService: A ready service.

        Raises:
            ConfigurationError: If the store or AMQP URL cannot be parsed.
            StoreConnectionError: If the store cannot be reached.
        """
        rng = rng or random.Random()
        telemetry = Telemetry.from_settings(settings)
        store = OrderStore(settings, telemetry)
        try:
            store.connect()
            publisher = create_publisher(settings, telemetry, rng)
        except Exception:
            store.close()
            telemetry.close()
            raise
        return cls(settings, telemetry, store, publisher, rng)

    def persist(self, order: Order) -> Order:
        """Assign identity fields and store the order.

        The status is always reset to ``Open``. A store failure is logged and
        sent to telemetry but not raised; the order is returned either way.

        Args:
            order (Order): Order built by the caller, mutated in place.

        Returns:
            Order: The same order with id, product, status and source set.
        """
        logger.info(f"Team {self.settings.team_name}")

        order.product = f"product-{self._rng.randrange(0, PRODUCT_PARTITIONS)}"
        order.id = str(ObjectId())
        order.status = ORDER_STATUS_OPEN
        if order.source in ("", SOURCE_PLACEHOLDER):
            order.source = self.settings.source

        if not self.store.insert(order):
            logger.warning(f"Order {order.id} was not stored")

        self.telemetry.record_event(order_captured_event(self.settings.team_name, self.settings.store_kind))
        return order

    def publish(self, order: Order) -> None:
        """Send the order notification.

        Raises:
            QueuePublishError: If the notification could not be delivered.
        """
        self.publisher.publish(order)

    def close(self) -> None:
        self.publisher.close()
        self.store.close()
        self.telemetry.close()
