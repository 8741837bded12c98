"""Intake Service Server."""

from contextlib import asynccontextmanager

from confluent_kafka.admin import AdminClient
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from order_common.config import PipelineSettings
from order_common.errors import (
    LedgerError,
    OrderNotFoundError,
    OrderNotScheduledError,
    OrderValidationError,
    QueueError,
)
from order_common.ledger import create_ledger
from order_common.queue import TaskQueue
from order_common.schemas import format_amount

from .logger import logger
from .schemas import ErrorResponse, OrderCreated, OrderRequest, RescheduleResponse, describe_errors
from .service import IntakeService


class IntakeState:
    """Holds the settings and the lazily built intake service."""

    def __init__(self):
        """Initialize intake state from the environment."""
        self.settings = PipelineSettings.from_env()
        self.service: IntakeService | None = None

    def get_service(self) -> IntakeService:
        """Build the intake service on first use.

        Returns:
            IntakeService: Service wired to the configured ledger and queue.
        """
        if self.service is None:
            self.service = IntakeService(
                ledger=create_ledger(self.settings.ledger_url, timeout=self.settings.call_timeout_seconds),
                queue=TaskQueue(
                    self.settings.kafka_bootstrap_servers,
                    topic=self.settings.fulfillment_topic,
                    timeout=self.settings.call_timeout_seconds,
                ),
            )
        return self.service

    def close(self) -> None:
        """Flush the queue client if the service was built."""
        if self.service is not None and hasattr(self.service.queue, "close"):
            self.service.queue.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    state.get_service()
    logger.info(f"Intake service scheduling to topic {state.settings.fulfillment_topic}")
    yield
    logger.info("Shutting down intake service...")
    state.close()


state = IntakeState()
app = FastAPI(title="Intake Service", lifespan=lifespan)
router = APIRouter()


def get_intake_service() -> IntakeService:
    """Dependency returning the intake service."""
    return state.get_service()


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 instead of FastAPI's 422."""
    field, message = describe_errors(exc.errors())
    if field:
        message = f"{field}: {message}"
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid order", message)


@app.exception_handler(OrderValidationError)
async def order_validation_handler(request: Request, exc: OrderValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid order", exc.message)


@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "Order not found", exc.message)


@app.exception_handler(OrderNotScheduledError)
async def order_not_scheduled_handler(request: Request, exc: OrderNotScheduledError):
    """The order exists as Pending but will not be fulfilled until rescheduled."""
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal error",
        "Order saved, but scheduling its fulfillment failed",
        id=exc.order_id,
        warning=f"Order {exc.order_id} is pending without a scheduled task; reschedule it via "
        f"POST /orders/{exc.order_id}/reschedule",
    )


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.error(f"Ledger failure handling {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error", "The order ledger is unavailable")


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error", "Failed to schedule order fulfillment")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unexpected error handling {request.method} {request.url.path}")
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "An unexpected error occurred while processing the order",
    )


@router.get("/health")
def health_check():
    """Check the health status of the service.

    Returns:
        dict: Contains Kafka connection status.
    """
    return {"kafka": _check_kafka_connection()}


@router.get("/health/ready")
def readiness_check():
    """Check if the service is ready to accept traffic.

    Returns:
        dict: Service readiness status and Kafka connection status.
    """
    kafka_ok = _check_kafka_connection()
    return {"status": "ready" if kafka_ok else "not_ready", "kafka": kafka_ok}


@router.post("/orders", status_code=status.HTTP_201_CREATED, response_model=OrderCreated)
def create_order(payload: OrderRequest, service: IntakeService = Depends(get_intake_service)):
    """Record a new order and schedule its fulfillment.

    Args:
        payload (OrderRequest): The order submission.

    Returns:
        OrderCreated: The id assigned to the order.
    """
    logger.info(f"Received new order for {payload.customer} at table {payload.table}")
    order = service.submit_order(payload)
    return OrderCreated(id=order.id)


@router.get("/orders/{order_id}")
def get_order(order_id: str, service: IntakeService = Depends(get_intake_service)):
    """Return the ledger record of an order with its derived total.

    Args:
        order_id (str): The order id.

    Returns:
        dict: The persisted record plus ``total``.
    """
    order = service.get_order(order_id)
    return {**order.to_record(), "total": format_amount(order.total)}


@router.post(
    "/orders/{order_id}/reschedule",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RescheduleResponse,
)
def reschedule_order(order_id: str, service: IntakeService = Depends(get_intake_service)):
    """Re-enqueue fulfillment for an order left Pending without a task.

    Args:
        order_id (str): The order id.

    Returns:
        RescheduleResponse: Whether a task was enqueued.
    """
    return RescheduleResponse(id=order_id, scheduled=service.reschedule(order_id))


def _check_kafka_connection() -> bool:
    """Check if Kafka connection is available.

    Returns:
        bool: True if Kafka is accessible, False otherwise.
    """
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.kafka_bootstrap_servers})
        return bool(admin.list_topics(timeout=5))
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
        return False


app.include_router(router)
logger.info("API router mounted.")
