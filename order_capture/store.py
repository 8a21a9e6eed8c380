"""MongoDB / Cosmos DB client that stores captured orders."""

import time
from enum import Enum
from typing import Optional
from urllib.parse import unquote, urlparse

from pydantic import BaseModel
from pymongo import MongoClient, timeout
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError
from pymongo.write_concern import WriteConcern

from .config import Settings
from .errors import ConfigurationError, StoreConnectionError
from .logger import logger
from .schemas import Order
from .telemetry import Telemetry

DATABASE_NAME = "k8orders"
COLLECTION_NAME = "orders"
SHARD_KEY = "product"

CONNECT_TIMEOUT_MS = 60_000
PING_TIMEOUT_SECONDS = 5

DEPENDENCY_TYPE = "MongoDB"


class StoreState(str, Enum):
    """Lifecycle of the store connection. FATAL is terminal."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    FATAL = "fatal"


class MongoConnectionInfo(BaseModel):
    """Parts of a MongoDB URL the client is opened with.

    Attributes:
        host (str): ``host:port`` exactly as written in the URL.
        username (str): Percent-decoded user name, empty when absent.
        password (str): Percent-decoded password, empty when absent.
        ssl (bool): True when the query string carries ``ssl=true``.
    """

    host: str
    username: str = ""
    password: str = ""
    ssl: bool = False

    @classmethod
    def parse(cls, url: str) -> "MongoConnectionInfo":
        """Split a connection URL.

        Args:
            url: MongoDB connection URL.

        Returns:
            MongoConnectionInfo: The parsed parts.

        Raises:
            ConfigurationError: If the URL cannot be parsed or has no host.
        """
        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ConfigurationError(f"Problem parsing Mongo URL {url}: {e}") from e

        host = parsed.netloc.rpartition("@")[2]
        if not host:
            raise ConfigurationError(f"Problem parsing Mongo URL {url}: no host")

        return cls(
            host=host,
            username=unquote(parsed.username or ""),
            password=unquote(parsed.password or ""),
            ssl="ssl=true" in parsed.query,
        )


class OrderStore:
    """Pooled connection to the orders collection.

    Writes are unacknowledged (``w=0``): inserts do not wait for the server, so
    a failed write is only visible when the driver itself raises.
    """

    def __init__(self, settings: Settings, telemetry: Telemetry):
        self._settings = settings
        self._telemetry = telemetry
        self._client: Optional[MongoClient] = None
        self._collection = None
        self.state = StoreState.UNINITIALIZED

    @property
    def dependency_name(self) -> str:
        return self._settings.store_kind.value

    def connect(self) -> None:
        """Open the connection pool and prepare the sharded collection.

        Raises:
            ConfigurationError: If the URL cannot be parsed.
            StoreConnectionError: If the server cannot be reached.
        """
        self.state = StoreState.CONNECTING
        logger.info(f"Using {self.dependency_name}")

        try:
            info = MongoConnectionInfo.parse(self._settings.mongo_url)
        except ConfigurationError as e:
            logger.error(str(e))
            self._telemetry.record_exception(e)
            self.state = StoreState.FATAL
            raise

        logger.info(f"\tUsername: {info.username}")
        logger.info(f"\tHost: {info.host}")
        logger.info(f"\tDatabase: {DATABASE_NAME}")
        logger.info(f"\tSSL: {info.ssl}")

        start_time = time.time()
        client = None
        try:
            client = MongoClient(
                host=info.host,
                username=info.username or None,
                password=info.password or None,
                tls=info.ssl,
                connectTimeoutMS=CONNECT_TIMEOUT_MS,
                serverSelectionTimeoutMS=CONNECT_TIMEOUT_MS,
            )
            client.admin.command("ping")
        except PyMongoError as e:
            logger.error(f"Can't connect to mongo at [{self._settings.mongo_url}]: {e}")
            self._telemetry.record_exception(e)
            self._record_dependency(False, "Create session", start_time)
            if client is not None:
                client.close()
            self.state = StoreState.FATAL
            raise StoreConnectionError(f"Can't connect to mongo at {info.host}: {e}") from e

        self._record_dependency(True, "Create session", start_time)
        self._client = client

        database = client[DATABASE_NAME]
        self._shard_collection(database)
        self._collection = database.get_collection(COLLECTION_NAME, write_concern=WriteConcern(w=0))
        self.state = StoreState.READY

    def _shard_collection(self, database) -> None:
        """Enable hashed sharding on the orders collection.

        Fails with OperationFailure once the collection is sharded or when the
        server does not support sharding; that is logged and ignored.
        """
        try:
            result = database.command(
                "shardCollection",
                f"{DATABASE_NAME}.{COLLECTION_NAME}",
                key={SHARD_KEY: "hashed"},
            )
        except OperationFailure as e:
            logger.info(
                "Could not create/re-create sharded MongoDB collection. "
                f"Either collection is already sharded or sharding is not supported: {e}"
            )
        except ConnectionFailure as e:
            logger.error(f"Lost connection to mongo while sharding collection: {e}")
            self._telemetry.record_exception(e)
            self.state = StoreState.FATAL
            self.close()
            raise StoreConnectionError(f"Lost connection while sharding collection: {e}") from e
        else:
            logger.info(f"Created MongoDB collection: {result}")

    def insert(self, order: Order) -> bool:
        """Write an order as a new document.

        Args:
            order (Order): Order with id, product, status and source already set.

        Returns:
            bool: True if the driver accepted the write.
        """
        if self.state is not StoreState.READY:
            logger.error(f"Store is {self.state.value}, dropping order {order.id}")
            return False

        start_time = time.time()
        success = False
        try:
            self._collection.insert_one(order.to_document())
            success = True
            logger.info(f"Inserted order {order.id} into {self.dependency_name}")
        except PyMongoError as e:
            logger.error(f"Problem inserting order {order.id}: {e}")
            self._telemetry.record_exception(e)

        self._record_dependency(success, "Insert order", start_time)
        return success

    def ping(self) -> bool:
        """Check the server answers.

        Returns:
            bool: True if the store is connected and reachable.
        """
        if self._client is None:
            return False
        try:
            with timeout(PING_TIMEOUT_SECONDS):
                self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"Mongo ping failed: {e}")
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._collection = None
            logger.info("Mongo client closed")
        if self.state is StoreState.READY:
            self.state = StoreState.UNINITIALIZED

    def _record_dependency(self, success: bool, data: str, start_time: float) -> None:
        self._telemetry.record_dependency(
            self.dependency_name,
            DEPENDENCY_TYPE,
            self._settings.mongo_url,
            success,
            data,
            start_time,
            time.time(),
        )
