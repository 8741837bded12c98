"""Batch fulfillment of scheduled orders.

For every delivered task the worker re-reads the order from the ledger,
renders its receipt, archives it, announces completion and finally marks the
order as processed. Each step is safe to repeat, because the queue may
deliver the same task more than once:

- an order that is already processed is skipped,
- the archive key depends only on the order id,
- the status update accepts the same receipt reference again.

Tasks in a batch are independent. A failing task is reported in the batch
result and never affects its siblings.
"""

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ValidationError

from order_common.errors import OrderNotFoundError, OrderPipelineError
from order_common.ledger import LedgerClient
from order_common.schemas import FulfillmentTask, OrderStatus, utc_now

from .announcer import Announcer
from .archive import DocumentStore, receipt_key
from .logger import logger
from .receipt import CONTENT_TYPE, render_receipt


class Delivery(BaseModel):
    """A task as delivered by the queue.

    Attributes:
        task_id: Queue-level identifier of the delivery
        body: Raw message body
    """

    task_id: str
    body: bytes


class TaskResult(str, Enum):
    """How a single task ended."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    PERMANENT_FAILURE = "permanent_failure"
    TRANSIENT_FAILURE = "transient_failure"


class TaskOutcome(BaseModel):
    """Outcome of one task within a batch."""

    task_id: str
    order_id: str | None = None
    result: TaskResult
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result in (TaskResult.PROCESSED, TaskResult.SKIPPED)


class BatchReport(BaseModel):
    """Aggregated outcomes of a batch, in delivery order."""

    outcomes: list[TaskOutcome] = []

    @property
    def succeeded(self) -> int:
        """Number of tasks that were processed or already complete."""
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failures(self) -> list[TaskOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    @property
    def failed_task_ids(self) -> list[str]:
        return [outcome.task_id for outcome in self.failures]

    @property
    def has_retryable_failures(self) -> bool:
        """True if redelivering the batch could still succeed for some task."""
        return any(outcome.result is TaskResult.TRANSIENT_FAILURE for outcome in self.outcomes)

    def count(self, result: TaskResult) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result is result)


class FulfillmentWorker:
    """Fulfills batches of delivered tasks."""

    def __init__(
        self,
        ledger: LedgerClient,
        documents: DocumentStore,
        announcer: Announcer,
        clock: Callable[[], datetime] = utc_now,
        parallelism: int = 4,
        batch_deadline: float = 60.0,
    ):
        """Initialize the worker.

        Args:
            ledger: Record store for orders
            documents: Archive for rendered receipts
            announcer: Publisher of completion announcements
            clock: Source of fulfillment timestamps
            parallelism: Maximum number of tasks processed concurrently
            batch_deadline: Seconds after which unfinished tasks are reported as failed
        """
        self.ledger = ledger
        self.documents = documents
        self.announcer = announcer
        self._clock = clock
        self.parallelism = parallelism
        self.batch_deadline = batch_deadline
        self._executor = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix="fulfillment")

    def process_batch(self, deliveries: Sequence[Delivery]) -> BatchReport:
        """Process every task of a batch independently.

        Never raises: each task's failure is captured in its outcome. Tasks
        still running when the batch deadline expires are reported as
        transient failures and finish in the background on the worker's pool;
        tasks that have not started by then are cancelled.

        Args:
            deliveries: The delivered tasks

        Returns:
            BatchReport: One outcome per delivery, in delivery order
        """
        if not deliveries:
            return BatchReport()

        futures = [self._executor.submit(self.process_task, delivery) for delivery in deliveries]
        done, not_done = wait(futures, timeout=self.batch_deadline)
        for future in not_done:
            future.cancel()

        outcomes = []
        for delivery, future in zip(deliveries, futures):
            if future in done:
                outcomes.append(future.result())
            else:
                logger.error(f"Task {delivery.task_id} did not finish within {self.batch_deadline}s")
                outcomes.append(
                    TaskOutcome(
                        task_id=delivery.task_id,
                        result=TaskResult.TRANSIENT_FAILURE,
                        reason="batch deadline exceeded",
                    )
                )

        report = BatchReport(outcomes=outcomes)
        logger.info(
            f"Batch done | tasks={len(outcomes)} | succeeded={report.succeeded} | "
            f"failed={len(report.failures)} | failed_task_ids={report.failed_task_ids}"
        )
        return report

    def process_task(self, delivery: Delivery) -> TaskOutcome:
        """Process one delivered task and classify its outcome.

        Args:
            delivery: The delivered task

        Returns:
            TaskOutcome: What happened to the task
        """
        try:
            task = FulfillmentTask.from_message(delivery.body)
        except ValidationError as e:
            logger.error(f"Discarding malformed task {delivery.task_id}: {e.errors()[0]['msg']}")
            return TaskOutcome(
                task_id=delivery.task_id,
                result=TaskResult.PERMANENT_FAILURE,
                reason=f"malformed task: {e.errors()[0]['msg']}",
            )

        try:
            result = self.fulfil(task.id)
        except OrderPipelineError as e:
            result = TaskResult.TRANSIENT_FAILURE if e.retryable else TaskResult.PERMANENT_FAILURE
            logger.error(f"Task {delivery.task_id} for order {task.id} failed ({result.value}): {e}")
            return TaskOutcome(task_id=delivery.task_id, order_id=task.id, result=result, reason=str(e))
        except Exception as e:
            logger.opt(exception=e).error(f"Unexpected error fulfilling order {task.id}")
            return TaskOutcome(
                task_id=delivery.task_id,
                order_id=task.id,
                result=TaskResult.TRANSIENT_FAILURE,
                reason=f"unexpected error: {e}",
            )

        return TaskOutcome(task_id=delivery.task_id, order_id=task.id, result=result)

    def fulfil(self, order_id: str) -> TaskResult:
        """Run the fulfillment steps for one order.

        Args:
            order_id: The order to fulfil

        Returns:
            TaskResult: PROCESSED, or SKIPPED if the order was already processed

        Raises:
            OrderPipelineError: If a step fails
        """
        order = self.ledger.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status is OrderStatus.PROCESSED:
            logger.info(f"Order {order_id} is already processed; skipping redelivered task")
            return TaskResult.SKIPPED

        now = self._clock()
        document = render_receipt(order, generated_at=now)

        key = self.documents.put(receipt_key(order.id), document, CONTENT_TYPE)

        self.announcer.announce(order, timestamp=now)

        self.ledger.update_status(order.id, OrderStatus.PROCESSED, updated_at=self._clock(), receipt_ref=key)
        logger.info(f"Order {order.id} processed, receipt archived as {key}")
        return TaskResult.PROCESSED

    def close(self) -> None:
        """Stop the task pool; queued tasks are cancelled, running ones finish on their own."""
        self._executor.shutdown(wait=False, cancel_futures=True)
