"""Test fixtures for the order capture tests."""

from unittest.mock import MagicMock

import pytest

from order_capture.config import Settings
from order_capture.schemas import Order
from order_capture.telemetry import Telemetry

from .urls import COSMOS_URL, EVENT_HUB_URL, RABBITMQ_URL


@pytest.fixture
def settings():
    """Cosmos DB store with a RabbitMQ queue.

    Returns:
        Settings: Settings with both telemetry keys set.
    """
    return Settings(
        appinsights_key="custom-key",
        challenge_appinsights_key="challenge-key",
        mongo_url=COSMOS_URL,
        amqp_url=RABBITMQ_URL,
        team_name="team-azure",
        source="aks-cluster",
    )


@pytest.fixture
def stream_settings(settings):
    """Same settings with an Event Hubs queue."""
    return settings.model_copy(update={"amqp_url": EVENT_HUB_URL})


@pytest.fixture
def telemetry():
    """Telemetry double that records calls."""
    return MagicMock(spec=Telemetry)


@pytest.fixture
def test_order():
    """Create a test order fixture.

    Returns:
        Order: An order as a client would send it, before persistence.
    """
    return Order(EmailAddress="a@b.com", Status="Pending", Total=12.5)


@pytest.fixture
def mock_client():
    """MongoClient double whose ``client["k8orders"]`` is a stable database mock."""
    client = MagicMock()
    client.__getitem__.return_value = MagicMock()
    return client


@pytest.fixture
def mock_mongo_client(mocker, mock_client):
    """Patch the MongoClient class so the store connects to ``mock_client``."""
    return mocker.patch("order_capture.store.MongoClient", return_value=mock_client)
