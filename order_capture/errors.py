"""Exceptions raised by the order capture components."""


class OrderCaptureError(Exception):
    """Base class for order capture failures."""


class ConfigurationError(OrderCaptureError):
    """A connection URL or setting could not be parsed."""


class StoreConnectionError(OrderCaptureError):
    """The document store could not be reached during startup."""


class QueuePublishError(OrderCaptureError):
    """An order notification could not be delivered to the queue backend.

    Attributes:
        order_id: Identifier of the order whose notification was lost.
    """

    def __init__(self, message: str, order_id: str = ""):
        super().__init__(message)
        self.order_id = order_id
