"""Application Insights telemetry for outbound calls and captured orders."""

from typing import Optional

from applicationinsights import TelemetryClient
from applicationinsights.channel import AsynchronousQueue, AsynchronousSender, TelemetryChannel

from .config import Settings, StoreKind
from .logger import logger


def create_client(instrumentation_key: str) -> TelemetryClient:
    """Create a client that sends from a background thread.

    Args:
        instrumentation_key: Application Insights instrumentation key.

    Returns:
        TelemetryClient: Client bound to an asynchronous channel.
    """
    channel = TelemetryChannel(None, AsynchronousQueue(AsynchronousSender()))
    return TelemetryClient(instrumentation_key, channel)


def order_captured_event(team_name: str, store_kind: StoreKind) -> str:
    """Label of the per-order event the challenge dashboard counts."""
    return f"CapureOrder: - Team Name {team_name} db {store_kind.value}"


class Telemetry:
    """Fan-out over the challenge and operator telemetry clients.

    The challenge client receives business events. The operator client, present
    only when the operator configured a key, receives exceptions and dependency
    records. Telemetry failures are logged and never raised.

    Attributes:
        challenge_client: Client for the challenge dashboard, may be None.
        custom_client: Client for the operator's own dashboard, may be None.
    """

    def __init__(self, challenge_client=None, custom_client=None):
        self.challenge_client = challenge_client
        self.custom_client = custom_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "Telemetry":
        """Build clients for the keys present in the settings."""
        challenge_client = None
        if settings.challenge_appinsights_key:
            challenge_client = create_client(settings.challenge_appinsights_key)
        else:
            logger.warning("No challenge telemetry key, captured-order events will not be sent")

        custom_client = None
        if settings.appinsights_key:
            custom_client = create_client(settings.appinsights_key)

        return cls(challenge_client, custom_client)

    def record_exception(self, error: BaseException) -> None:
        if self.custom_client is None:
            return
        try:
            self.custom_client.track_exception(type(error), error, error.__traceback__)
        except Exception as e:
            logger.warning(f"Failed to record exception telemetry: {e}")

    def record_dependency(
        self,
        name: str,
        type_label: str,
        target: str,
        success: bool,
        data: str,
        start_time: float,
        end_time: float,
    ) -> None:
        """Record an outbound call.

        Args:
            name: Dependency name, e.g. 'CosmosDB' or 'RabbitMQ'.
            type_label: Dependency type, e.g. 'MongoDB' or 'AMQP'.
            target: Connection string of the called backend.
            success: Whether the call succeeded.
            data: Operation label, e.g. 'Insert order'.
            start_time: Epoch seconds when the call started.
            end_time: Epoch seconds when the call ended.
        """
        if self.custom_client is None:
            return
        duration_ms = int(max(end_time - start_time, 0) * 1000)
        try:
            self.custom_client.track_dependency(
                name,
                data,
                type=type_label,
                target=target,
                duration=duration_ms,
                success=success,
            )
        except Exception as e:
            logger.warning(f"Failed to record dependency telemetry for {name}: {e}")

    def record_event(self, label: str) -> None:
        if self.challenge_client is None:
            return
        try:
            self.challenge_client.track_event(label)
        except Exception as e:
            logger.warning(f"Failed to record event telemetry: {e}")

    def close(self) -> None:
        """Flush pending telemetry on both clients."""
        for client in (self.challenge_client, self.custom_client):
            if client is None:
                continue
            try:
                client.flush()
            except Exception as e:
                logger.warning(f"Failed to flush telemetry: {e}")
