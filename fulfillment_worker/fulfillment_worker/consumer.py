"""Kafka consumer delivering fulfillment tasks to the worker in batches."""

import threading
import time

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition
from logging_utils.config import get_kafka_logger

from .worker import BatchReport, Delivery, FulfillmentWorker, TaskResult

logger = get_kafka_logger("fulfillment-worker")

# Configuration constants
DEFAULT_CONSUMER_CONFIG = {
    "auto.offset.reset": "earliest",
    "enable.auto.commit": False,
    "session.timeout.ms": 30000,
    "max.poll.interval.ms": 300000,
}


def task_id_of(msg) -> str:
    """Identify a delivered message by its topic, partition and offset."""
    return f"{msg.topic()}:{msg.partition()}:{msg.offset()}"


class FulfillmentConsumer:
    """Consumes fulfillment tasks in batches and settles them with the broker.

    Offsets are committed manually after each batch. A batch in which some
    task failed transiently is not committed: the consumer seeks back to the
    first offset of the batch on every partition, so Kafka delivers the whole
    batch again. Tasks that already succeeded are skipped on replay by the
    worker. Permanent failures are committed past and only logged.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        worker: FulfillmentWorker,
        topic: str = "orders.fulfillment",
        batch_size: int = 10,
        poll_timeout: float = 1.0,
        redelivery_backoff: float = 1.0,
    ):
        """Initialize the fulfillment consumer.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            group_id: Consumer group ID
            worker: Worker processing each batch
            topic: Topic carrying fulfillment tasks
            batch_size: Maximum number of tasks per batch
            poll_timeout: Seconds to wait for a batch to fill
            redelivery_backoff: Seconds to pause after rewinding a failed batch
        """
        self.worker = worker
        self.topic = topic
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout
        self.redelivery_backoff = redelivery_backoff
        self.stats = {
            "batches": 0,
            "processed": 0,
            "skipped": 0,
            "failed": 0,
            "redelivered_batches": 0,
            "errors": 0,
            "start_time": time.time(),
        }
        self.last_report: BatchReport | None = None
        self._stopped = threading.Event()

        logger.info(f"Initializing consumer with bootstrap_servers={bootstrap_servers}, group_id={group_id}")

        config = DEFAULT_CONSUMER_CONFIG.copy()
        config.update({"bootstrap.servers": bootstrap_servers, "group.id": group_id})
        self.consumer = Consumer(config)

    def subscribe(self) -> None:
        """Subscribe to the fulfillment topic."""
        logger.info(f"Subscribing to topic: {self.topic}")
        self.consumer.subscribe([self.topic])

    def poll_batch(self) -> list:
        """Fetch up to ``batch_size`` messages, dropping broker-level errors.

        Returns:
            list: The delivered messages
        """
        messages = self.consumer.consume(num_messages=self.batch_size, timeout=self.poll_timeout)
        batch = []
        for msg in messages:
            error = msg.error()
            if error:
                if error.code() != KafkaError._PARTITION_EOF:
                    logger.error(f"Kafka error: {error}")
                    self.stats["errors"] += 1
                continue
            batch.append(msg)
        return batch

    def process_batch(self) -> BatchReport | None:
        """Consume one batch, run the worker and settle offsets.

        Returns:
            BatchReport | None: The worker's report, or None if nothing was delivered
        """
        messages = self.poll_batch()
        if not messages:
            return None

        deliveries = [Delivery(task_id=task_id_of(msg), body=msg.value() or b"") for msg in messages]
        report = self.worker.process_batch(deliveries)
        self._record(report)
        self._settle(messages, report)
        return report

    def _record(self, report: BatchReport) -> None:
        self.last_report = report
        self.stats["batches"] += 1
        self.stats["processed"] += report.count(TaskResult.PROCESSED)
        self.stats["skipped"] += report.count(TaskResult.SKIPPED)
        self.stats["failed"] += len(report.failures)

    def _settle(self, messages: list, report: BatchReport) -> None:
        if report.has_retryable_failures:
            self._rewind(messages)
            self.stats["redelivered_batches"] += 1
            logger.warning(
                f"Batch has retryable failures {report.failed_task_ids}; rewinding for redelivery"
            )
            self._stopped.wait(self.redelivery_backoff)
            return

        try:
            self.consumer.commit(asynchronous=False)
        except KafkaException as e:
            # Uncommitted offsets are redelivered after a rebalance; replays are idempotent.
            logger.error(f"Failed to commit batch offsets: {e}")
            self.stats["errors"] += 1

    def _rewind(self, messages: list) -> None:
        earliest: dict[tuple[str, int], int] = {}
        for msg in messages:
            key = (msg.topic(), msg.partition())
            earliest[key] = min(earliest.get(key, msg.offset()), msg.offset())
        for (topic, partition), offset in earliest.items():
            self.consumer.seek(TopicPartition(topic, partition, offset))

    def process_messages(self) -> None:
        """Process batches until stopped."""
        logger.info("Starting batch processing loop")
        last_status_log = time.time()
        STATUS_LOG_INTERVAL = 300  # Log status every 5 minutes

        try:
            while not self._stopped.is_set():
                try:
                    self.process_batch()
                except KafkaException as e:
                    logger.error(f"Kafka error: {e}")
                    self.stats["errors"] += 1

                now = time.time()
                if now - last_status_log >= STATUS_LOG_INTERVAL:
                    self._log_status()
                    last_status_log = now
        except KeyboardInterrupt:
            logger.info("Shutting down consumer...")
        finally:
            self._log_status()
            self.consumer.close()

    def _log_status(self) -> None:
        """Log consumer status and statistics."""
        runtime = time.time() - self.stats["start_time"]
        logger.info(
            f"Consumer status | batches={self.stats['batches']} | processed={self.stats['processed']} | "
            f"skipped={self.stats['skipped']} | failed={self.stats['failed']} | "
            f"redelivered_batches={self.stats['redelivered_batches']} | errors={self.stats['errors']} | "
            f"runtime_seconds={runtime:.2f}"
        )

    def stop(self) -> None:
        """Ask the processing loop to exit after the current batch."""
        self._stopped.set()
