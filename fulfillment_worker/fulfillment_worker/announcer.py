"""Kafka producer for order completion announcements."""

from collections.abc import Iterable
from datetime import datetime
from typing import Literal

from confluent_kafka import KafkaException, Producer
from logging_utils.config import get_kafka_logger
from pydantic import BaseModel, ConfigDict, Field

from order_common.errors import NotificationError
from order_common.schemas import Order, OrderStatus, format_amount

logger = get_kafka_logger("fulfillment-worker")

AnnouncementKind = Literal["ready", "staff"]
ANNOUNCEMENT_KINDS: tuple[str, ...] = ("ready", "staff")


class AnnouncedItem(BaseModel):
    """Item detail carried by staff announcements."""

    name: str
    quantity: int
    subtotal: str


class Announcement(BaseModel):
    """An order completion announcement.

    Every kind carries the order id so consumers can correlate or filter.

    Attributes:
        kind: ``ready`` for customers, ``staff`` for the floor team
        id: The order id
        customer: Customer display name
        table: Table number
        total: Order total with two decimals
        status: Always Processed
        timestamp: When the order was fulfilled
        message: Human-readable text
        items: Item detail, only on staff announcements
    """

    kind: AnnouncementKind
    id: str
    customer: str
    table: int
    total: str
    status: OrderStatus = OrderStatus.PROCESSED
    timestamp: datetime
    message: str = Field(..., min_length=10)
    items: list[AnnouncedItem] | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "ready",
                "id": "7d1c6a8e-2b44-4c55-9f1a-0e6a3f1d2c11",
                "customer": "Ana",
                "table": 3,
                "total": "10.00",
                "status": "Processed",
                "timestamp": "2025-05-01T12:05:00Z",
                "message": "Order 7d1c6a8e-2b44-4c55-9f1a-0e6a3f1d2c11 is ready! Customer: Ana, Table: 3, Total: R$ 10.00",
            }
        }
    )


def build_announcements(order: Order, kinds: Iterable[str], timestamp: datetime) -> list[Announcement]:
    """Build one announcement per requested kind.

    Args:
        order: The fulfilled order
        kinds: Announcement kinds to produce
        timestamp: Fulfillment time

    Returns:
        list[Announcement]: The announcements, in the order of ``kinds``
    """
    total = format_amount(order.total)
    announcements = []
    for kind in kinds:
        if kind == "ready":
            announcements.append(
                Announcement(
                    kind="ready",
                    id=order.id,
                    customer=order.customer,
                    table=order.table,
                    total=total,
                    timestamp=timestamp,
                    message=f"Order {order.id} is ready! Customer: {order.customer}, "
                    f"Table: {order.table}, Total: R$ {total}",
                )
            )
        elif kind == "staff":
            announcements.append(
                Announcement(
                    kind="staff",
                    id=order.id,
                    customer=order.customer,
                    table=order.table,
                    total=total,
                    timestamp=timestamp,
                    message=f"Deliver order {order.id} to {order.customer} at table {order.table}",
                    items=[
                        AnnouncedItem(name=item.name, quantity=item.quantity, subtotal=format_amount(item.subtotal))
                        for item in order.items
                    ],
                )
            )
        else:
            raise ValueError(f"Unknown announcement kind: {kind}")
    return announcements


class Announcer:
    """Publishes order completion announcements to the notification topic.

    Announcements are keyed by order id and tagged with a ``kind`` header.
    ``announce`` waits for the broker acknowledgement, so a returned call
    means every announcement was published at least once.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str = "orders.ready",
        kinds: Iterable[str] = ("ready",),
        client_id: str = "fulfillment-worker",
        timeout: float = 5.0,
    ):
        """Initialize the announcement producer.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            topic: Topic carrying announcements
            kinds: Announcement kinds published for every order
            client_id: Producer client ID
            timeout: Seconds to wait for delivery acknowledgements
        """
        self.kinds = tuple(kinds)
        unknown = set(self.kinds) - set(ANNOUNCEMENT_KINDS)
        if unknown or "ready" not in self.kinds:
            raise ValueError(f"Announcement kinds must include 'ready' and be among {ANNOUNCEMENT_KINDS}")
        self.topic = topic
        self.timeout = timeout
        self.producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "client.id": client_id,
                "acks": "all",
                "message.timeout.ms": int(timeout * 1000),
            }
        )

    def announce(self, order: Order, timestamp: datetime) -> list[Announcement]:
        """Publish every configured announcement for a fulfilled order.

        Args:
            order: The fulfilled order
            timestamp: Fulfillment time

        Returns:
            list[Announcement]: The published announcements

        Raises:
            NotificationError: If any announcement was not acknowledged
        """
        announcements = build_announcements(order, self.kinds, timestamp)
        errors = []

        def on_delivery(err, msg):
            if err:
                errors.append(err)
                logger.error(f"Announcement delivery failed for order {order.id}: {err}")
            else:
                logger.debug(f"Announcement delivered to {msg.topic()} [{msg.partition()}]")

        try:
            for announcement in announcements:
                self.producer.produce(
                    topic=self.topic,
                    key=order.id.encode("utf-8"),
                    value=announcement.model_dump_json(exclude_none=True).encode("utf-8"),
                    headers=[("kind", announcement.kind.encode("utf-8"))],
                    callback=on_delivery,
                )
            remaining = self.producer.flush(self.timeout)
        except (BufferError, KafkaException) as e:
            raise NotificationError(f"Failed to announce order {order.id}: {e}") from e

        if errors:
            raise NotificationError(f"Failed to announce order {order.id}: {errors[0]}")
        if remaining > 0:
            raise NotificationError(f"Timed out announcing order {order.id}")

        logger.info(f"Announced order {order.id} ({', '.join(a.kind for a in announcements)})")
        return announcements

    def close(self) -> None:
        """Flush pending announcements."""
        remaining = self.producer.flush(self.timeout)
        if remaining > 0:
            logger.warning(f"{remaining} announcements still pending delivery")
