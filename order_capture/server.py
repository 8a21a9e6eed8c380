"""Order Capture Server."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException

from .config import Settings
from .errors import QueuePublishError
from .logger import logger
from .schemas import Order
from .service import OrderService


class ServerState:
    """Holds the service built at startup."""

    def __init__(self) -> None:
        self.service: Optional[OrderService] = None


state = ServerState()
router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the order service on startup and release it on shutdown.

    Startup errors are not caught: a store that cannot be reached stops the process.

    Args:
        app: The FastAPI application instance
    """
    if state.service is None:
        state.service = OrderService.from_settings(Settings.from_env())
    logger.info("Order capture service started")

    yield

    logger.info("Shutting down order capture service...")
    if state.service is not None:
        state.service.close()
        state.service = None
    logger.info("Shutdown complete")


@router.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/ready")
def readiness_check():
    """Check if the service is ready to accept traffic.

    Returns:
        dict: Service readiness status and document store reachability.
    """
    store_ok = state.service is not None and state.service.store.ping()
    return {"status": "ready" if store_ok else "not_ready", "store": store_ok}


@router.post("/v1/order")
def capture_order(order: Order):
    """Persist an order and publish its notification.

    Args:
        order (Order): The order sent by the client.

    Returns:
        dict: The identifier assigned to the order.

    Raises:
        HTTPException: 503 if the service is not started or the notification could not be sent.
    """
    if state.service is None:
        raise HTTPException(status_code=503, detail="Service unavailable")

    logger.info(f"Received new order for {order.email_address}")
    order = state.service.persist(order)

    try:
        state.service.publish(order)
    except QueuePublishError as e:
        logger.error(f"Failed to publish order {order.id}: {e}")
        raise HTTPException(status_code=503, detail=f"Order {order.id} could not be published") from e

    logger.info(f"Order captured successfully: {order.id}")
    return {"orderId": order.id}


app = FastAPI(title="Order Capture Service", lifespan=lifespan)
app.include_router(router)
logger.info("API router mounted.")
