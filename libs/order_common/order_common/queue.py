"""Kafka producer for scheduling fulfillment tasks."""

from confluent_kafka import KafkaException, Producer
from loguru import logger

from .errors import QueueError
from .schemas import FulfillmentTask


class TaskQueue:
    """Work queue client that schedules fulfillment tasks on a Kafka topic.

    Tasks are keyed by order id, so every task for the same order lands on the
    same partition. ``enqueue`` waits for the broker acknowledgement instead of
    firing and forgetting: the caller must know whether scheduling happened.

    Attributes:
        topic: The topic tasks are produced to.
    """

    def __init__(self, bootstrap_servers: str, topic: str = "orders.fulfillment", timeout: float = 5.0):
        """Initialize the Kafka producer.

        Args:
            bootstrap_servers: Comma-separated list of Kafka broker addresses
            topic: Topic carrying fulfillment tasks
            timeout: Seconds to wait for a delivery acknowledgement
        """
        self.topic = topic
        self.timeout = timeout
        self._producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "acks": "all",
                "enable.idempotence": True,
                "message.timeout.ms": int(timeout * 1000),
            }
        )

    @property
    def producer(self):
        """Get the underlying Kafka producer instance."""
        return self._producer

    def enqueue(self, task: FulfillmentTask) -> None:
        """Publish a task and wait until the broker has acknowledged it.

        Args:
            task: The task to schedule.

        Raises:
            QueueError: If the task was not acknowledged within the timeout.
        """
        errors = []

        def on_delivery(err, msg):
            if err:
                errors.append(err)
                logger.error(f"Task delivery failed for order {task.id} on {self.topic}: {err}")
            else:
                logger.debug(f"Task delivered to {msg.topic()} [p:{msg.partition()}] @ {msg.offset()}")

        try:
            self._producer.produce(
                topic=self.topic,
                key=task.id.encode("utf-8"),
                value=task.to_message(),
                on_delivery=on_delivery,
            )
            remaining = self._producer.flush(self.timeout)
        except (BufferError, KafkaException) as e:
            raise QueueError(f"Failed to schedule order {task.id}: {e}") from e

        if errors:
            raise QueueError(f"Failed to schedule order {task.id}: {errors[0]}")
        if remaining > 0:
            raise QueueError(f"Timed out scheduling order {task.id}")

    def close(self) -> None:
        """Flush any pending deliveries."""
        self._producer.flush(self.timeout)
