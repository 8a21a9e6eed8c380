"""Environment-driven configuration for the order capture service."""

import os
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict

from .logger import logger

COSMOS_DB_HOST_FRAGMENT = "documents.azure.com"
EVENT_HUB_HOST_FRAGMENT = "servicebus.windows.net"

# Variables whose values are echoed to the log at startup.
LOGGED_VARIABLES = {
    "appinsights_key": "APPINSIGHTS_KEY",
    "challenge_appinsights_key": "CHALLENGEAPPINSIGHTS_KEY",
    "mongo_url": "MONGOURL",
    "amqp_url": "AMQPURL",
    "team_name": "TEAMNAME",
}


class StoreKind(str, Enum):
    """Document store variants. The value is the telemetry label."""

    SELF_HOSTED = "MongoDB"
    MANAGED_CLOUD = "CosmosDB"


class QueueKind(str, Enum):
    """Queue backend variants. The value is the telemetry label."""

    LEGACY = "RabbitMQ"
    STREAM = "EventHub"


class Settings(BaseModel):
    """Connection strings and labels for one process.

    Attributes:
        appinsights_key (str): Operator's Application Insights key, may be empty.
        challenge_appinsights_key (str): Challenge dashboard Application Insights key.
        mongo_url (str): MongoDB or Cosmos DB connection URL.
        amqp_url (str): RabbitMQ or Event Hubs AMQP URL.
        team_name (str): Team label sent with every order notification.
        source (str): Fallback for an order's source field.
    """

    model_config = ConfigDict(frozen=True)

    appinsights_key: str = ""
    challenge_appinsights_key: str = ""
    mongo_url: str = ""
    amqp_url: str = ""
    team_name: str = ""
    source: str = ""

    @property
    def store_kind(self) -> StoreKind:
        if COSMOS_DB_HOST_FRAGMENT in self.mongo_url:
            return StoreKind.MANAGED_CLOUD
        return StoreKind.SELF_HOSTED

    @property
    def queue_kind(self) -> QueueKind:
        if EVENT_HUB_HOST_FRAGMENT in self.amqp_url:
            return QueueKind.STREAM
        return QueueKind.LEGACY

    @property
    def event_hub_name(self) -> str:
        """Path component of the AMQP URL, leading slash included."""
        return urlparse(self.amqp_url).path

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read settings from the process environment.

        Missing values are logged, never rejected; the component that needs a
        value fails when it tries to use it.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Settings: The resolved settings.
        """
        environ = os.environ if environ is None else environ

        values = {}
        for field, variable in LOGGED_VARIABLES.items():
            value = environ.get(variable, "")
            _log_variable(variable, value)
            values[field] = value

        settings = cls(source=environ.get("SOURCE", ""), **values)
        logger.info(f"Using {settings.store_kind.value} document store and {settings.queue_kind.value} queue")
        return settings


def _log_variable(name: str, value: str) -> None:
    if not value:
        logger.warning(f"The environment variable {name} has not been set")
    else:
        logger.info(f"The environment variable {name} is {value}")
