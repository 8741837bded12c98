"""Error taxonomy shared by the intake service and the fulfillment worker.

Every error carries a ``retryable`` flag. The fulfillment worker uses it to
decide whether a failed task should be redelivered (transient) or reported
as a permanent failure.
"""


class OrderPipelineError(Exception):
    """Base class for all order pipeline errors."""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderValidationError(OrderPipelineError):
    """A submission violated an input constraint. Nothing was written."""

    def __init__(self, message: str, field: str | None = None):
        if field:
            message = f"{field}: {message}"
        super().__init__(message)
        self.field = field


class LedgerError(OrderPipelineError):
    """The record store failed or was unreachable."""

    retryable = True


class OrderNotFoundError(LedgerError):
    """No order is recorded under the given id."""

    retryable = False

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class DuplicateOrderError(LedgerError):
    """An order with the same id already exists."""

    retryable = False

    def __init__(self, order_id: str):
        super().__init__(f"Order already exists: {order_id}")
        self.order_id = order_id


class InvalidTransitionError(LedgerError):
    """A status update would move an order backwards or skip its receipt."""

    retryable = False


class CorruptRecordError(LedgerError):
    """A stored record no longer satisfies the order invariants."""

    retryable = False

    def __init__(self, order_id: str, reason: str):
        super().__init__(f"Stored order {order_id} is malformed: {reason}")
        self.order_id = order_id


class QueueError(OrderPipelineError):
    """A fulfillment task could not be delivered to the work queue."""

    retryable = True


class OrderNotScheduledError(OrderPipelineError):
    """The order was recorded as Pending but its fulfillment was not scheduled.

    The order will not be fulfilled until it is rescheduled.
    """

    def __init__(self, order_id: str, cause: Exception | None = None):
        super().__init__(f"Order {order_id} was saved but could not be scheduled for fulfillment")
        self.order_id = order_id
        self.cause = cause


class RenderError(OrderPipelineError):
    """The stored order cannot be rendered into a receipt."""


class ArchiveError(OrderPipelineError):
    """The document store failed or was unreachable while storing a receipt."""

    retryable = True


class ArchiveRejectedError(ArchiveError):
    """The document store refused the write, e.g. bad credentials or a missing bucket."""

    retryable = False

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class NotificationError(OrderPipelineError):
    """An announcement could not be published."""

    retryable = True
