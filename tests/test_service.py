"""Tests for the persist and publish entry points."""

import random
import re
from unittest.mock import MagicMock

import pytest
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError

from order_capture.errors import ConfigurationError, QueuePublishError, StoreConnectionError
from order_capture.publisher import LegacyQueuePublisher, OrderPublisher
from order_capture.schemas import Order
from order_capture.service import OrderService
from order_capture.store import OrderStore, StoreState

PRODUCTS = {f"product-{n}" for n in range(11)}


@pytest.fixture
def store():
    store = MagicMock(spec=OrderStore)
    store.insert.return_value = True
    return store


@pytest.fixture
def publisher():
    return MagicMock(spec=OrderPublisher)


@pytest.fixture
def service(settings, telemetry, store, publisher):
    return OrderService(settings, telemetry, store, publisher, random.Random(3))


@pytest.fixture
def mock_create_client(mocker):
    """Patch Application Insights client creation."""
    return mocker.patch("order_capture.telemetry.create_client")


@pytest.fixture
def connected_store(settings, telemetry, mock_mongo_client):
    store = OrderStore(settings, telemetry)
    store.connect()
    return store


def test_persist_assigns_identity_fields(service, store, test_order):
    order = service.persist(test_order)

    assert order is test_order
    assert re.fullmatch(r"[0-9a-f]{24}", order.id)
    assert order.product in PRODUCTS
    assert order.status == "Open"
    assert order.source == "aks-cluster"
    store.insert.assert_called_once_with(order)


@pytest.mark.parametrize("source", ["", "string"])
def test_persist_defaults_blank_source(service, source):
    order = service.persist(Order(EmailAddress="a@b.com", Status="Pending", Source=source))

    assert order.source == "aks-cluster"


def test_persist_keeps_caller_source(service):
    order = service.persist(Order(EmailAddress="a@b.com", Status="Pending", Source="app-service"))

    assert order.source == "app-service"


def test_persist_overwrites_caller_status(service):
    order = service.persist(Order(EmailAddress="a@b.com", Status="Shipped"))

    assert order.status == "Open"


def test_persist_records_captured_event(service, telemetry, test_order):
    service.persist(test_order)

    telemetry.record_event.assert_called_once_with("CapureOrder: - Team Name team-azure db CosmosDB")


def test_persist_products_cover_all_partitions(service):
    products = {service.persist(Order(EmailAddress="a@b.com", Status="Pending")).product for _ in range(300)}

    assert products == PRODUCTS


def test_persist_is_reproducible_with_seeded_rng(settings, telemetry, store, publisher):
    first = OrderService(settings, telemetry, store, publisher, random.Random(11))
    second = OrderService(settings, telemetry, store, publisher, random.Random(11))

    products_a = [first.persist(Order(EmailAddress="a@b.com", Status="Pending")).product for _ in range(5)]
    products_b = [second.persist(Order(EmailAddress="a@b.com", Status="Pending")).product for _ in range(5)]

    assert products_a == products_b


def test_persist_survives_unreachable_store(settings, telemetry, publisher, connected_store, mock_client, test_order):
    mock_client["k8orders"].get_collection.return_value.insert_one.side_effect = AutoReconnect("unreachable")
    service = OrderService(settings, telemetry, connected_store, publisher)

    order = service.persist(test_order)

    assert order.id
    assert order.product in PRODUCTS
    assert order.status == "Open"
    telemetry.record_exception.assert_called_once()


def test_publish_propagates_queue_failure(service, publisher, test_order):
    publisher.publish.side_effect = QueuePublishError("Sending message: refused", order_id="x")

    with pytest.raises(QueuePublishError):
        service.publish(test_order)


def test_cosmos_with_rabbitmq_scenario(settings, telemetry, connected_store, mocker):
    """Persist then publish an order with Cosmos DB and RabbitMQ configured."""
    service = OrderService(settings, telemetry, connected_store, LegacyQueuePublisher(settings, telemetry))

    order = service.persist(Order(EmailAddress="a@b.com", Status="Pending"))

    assert order.id
    assert order.product in PRODUCTS
    assert order.status == "Open"
    assert order.source == "aks-cluster"

    mock_connection_class = mocker.patch("order_capture.publisher.pika.BlockingConnection")
    service.publish(order)

    channel = mock_connection_class.return_value.channel.return_value
    channel.basic_publish.assert_called_once()
    publish_kwargs = channel.basic_publish.call_args.kwargs
    assert publish_kwargs["routing_key"] == "order"
    assert publish_kwargs["body"] == f"{{{{'order': '{order.id}', 'source': 'team-azure'}}}}"


def test_from_settings_survives_sharded_collection(settings, mock_client, mock_mongo_client, mock_create_client):
    mock_client["k8orders"].command.side_effect = OperationFailure("already sharded")

    service = OrderService.from_settings(settings)

    assert service.store.state is StoreState.READY
    assert isinstance(service.publisher, LegacyQueuePublisher)


def test_from_settings_fails_when_store_unreachable(settings, mock_client, mock_mongo_client, mock_create_client):
    mock_client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")

    with pytest.raises(StoreConnectionError):
        OrderService.from_settings(settings)

    mock_client.close.assert_called_once()
    mock_create_client.return_value.flush.assert_called()


def test_from_settings_rejects_malformed_amqp_url(settings, mock_client, mock_mongo_client, mock_create_client):
    """A bad AMQP URL stops startup and releases the connected store."""
    settings = settings.model_copy(
        update={"amqp_url": "amqps://key:secret@[orders-ns.servicebus.windows.net/orders"}
    )

    with pytest.raises(ConfigurationError):
        OrderService.from_settings(settings)

    mock_client.close.assert_called_once()
    mock_create_client.return_value.track_exception.assert_called_once()
    mock_create_client.return_value.flush.assert_called()


def test_close_releases_components(service, telemetry, store, publisher):
    service.close()

    publisher.close.assert_called_once()
    store.close.assert_called_once()
    telemetry.close.assert_called_once()
