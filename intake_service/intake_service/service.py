"""Order intake: validate, record as Pending, schedule fulfillment."""

import uuid
from collections.abc import Callable, Mapping
from datetime import datetime

from pydantic import ValidationError

from order_common.errors import LedgerError, OrderNotFoundError, OrderNotScheduledError, QueueError
from order_common.ledger import LedgerClient
from order_common.schemas import FulfillmentTask, Order, OrderStatus, format_amount, utc_now

from .logger import logger
from .schemas import OrderRequest, to_validation_error


def new_order_id() -> str:
    """Generate a random 128-bit order id rendered as text."""
    return str(uuid.uuid4())


class IntakeService:
    """Records new orders and schedules their fulfillment.

    The service performs exactly one ledger write and one queue write per
    accepted order and never retries either. Calling ``submit_order`` twice
    with the same input records two distinct orders.

    Attributes:
        ledger: Record store for orders.
        queue: Work queue client with an ``enqueue(task)`` method.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        queue,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_order_id,
    ):
        """Initialize the intake service.

        Args:
            ledger: Record store for orders
            queue: Work queue client
            clock: Source of creation timestamps
            id_factory: Source of fresh order ids
        """
        self.ledger = ledger
        self.queue = queue
        self._clock = clock
        self._id_factory = id_factory

    def submit_order(self, request: OrderRequest | Mapping) -> Order:
        """Validate a submission, record it as Pending and schedule fulfillment.

        Args:
            request: The submission, as a model or a raw mapping.

        Returns:
            Order: The recorded order.

        Raises:
            OrderValidationError: The submission is invalid; nothing was written.
            LedgerError: The order could not be recorded; nothing was scheduled.
            OrderNotScheduledError: The order was recorded but not scheduled.
        """
        if not isinstance(request, OrderRequest):
            try:
                request = OrderRequest.model_validate(request)
            except ValidationError as e:
                raise to_validation_error(e) from e

        now = self._clock()
        order = Order(
            id=self._id_factory(),
            customer=request.customer,
            table=request.table,
            items=request.items,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        try:
            self.ledger.put(order)
        except LedgerError as e:
            logger.error(f"Failed to record order {order.id}: {e}")
            raise

        try:
            self.queue.enqueue(FulfillmentTask(id=order.id))
        except QueueError as e:
            logger.warning(
                f"Order {order.id} is recorded as Pending but was not scheduled; "
                f"it needs to be rescheduled: {e}"
            )
            raise OrderNotScheduledError(order.id, e) from e

        logger.info(
            f"Order {order.id} created for {order.customer} at table {order.table} "
            f"({len(order.items)} items, total {format_amount(order.total)})"
        )
        return order

    def get_order(self, order_id: str) -> Order:
        """Read the current state of an order.

        Raises:
            OrderNotFoundError: No order has this id.
        """
        order = self.ledger.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def reschedule(self, order_id: str) -> bool:
        """Re-enqueue the fulfillment task of an order that is still Pending.

        Safe to repeat: the worker skips orders that are already processed.

        Args:
            order_id: The order to reschedule.

        Returns:
            bool: True if a task was enqueued, False if the order is already processed.

        Raises:
            OrderNotFoundError: No order has this id.
            QueueError: The task could not be enqueued.
        """
        order = self.get_order(order_id)
        if order.status is OrderStatus.PROCESSED:
            logger.info(f"Order {order_id} is already processed; nothing to reschedule")
            return False
        self.queue.enqueue(FulfillmentTask(id=order_id))
        logger.info(f"Order {order_id} rescheduled for fulfillment")
        return True
