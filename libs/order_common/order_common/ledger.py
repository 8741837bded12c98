"""Ledger clients: the durable record store holding one order per id.

The ledger is the single source of truth for order state. Both clients share
the same contract:

- ``put`` creates an order and refuses to overwrite an existing id.
- ``get`` returns the current order or ``None``.
- ``update_status`` applies a one-directional status transition.
"""

import os
import threading
from datetime import datetime
from typing import Protocol

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import JSON, Column, Integer, String, create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import CorruptRecordError, DuplicateOrderError, InvalidTransitionError, LedgerError, OrderNotFoundError
from .schemas import Order, OrderStatus

MEMORY_URL = "memory://"


class LedgerClient(Protocol):
    """Protocol defining the contract of the order record store."""

    def put(self, order: Order) -> None:
        """Record a new order. Raises DuplicateOrderError if the id exists."""
        ...

    def get(self, order_id: str) -> Order | None:
        """Return the current order, or None if no order has this id."""
        ...

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        updated_at: datetime,
        receipt_ref: str | None = None,
    ) -> Order:
        """Apply a status transition and return the updated order."""
        ...


def apply_transition(
    order: Order, status: OrderStatus, updated_at: datetime, receipt_ref: str | None = None
) -> Order:
    """Compute the order that results from a status transition.

    Repeating the Processed transition with the same receipt reference is an
    idempotent overwrite that only refreshes ``updated_at``.

    Args:
        order: Current state of the order.
        status: Requested status.
        updated_at: Timestamp of the transition.
        receipt_ref: Document key, mandatory for the Processed status.

    Returns:
        Order: The new state.

    Raises:
        InvalidTransitionError: If the transition moves backwards, lacks a
            receipt reference, or would replace an existing receipt.
    """
    if status is OrderStatus.PENDING:
        if order.status is OrderStatus.PROCESSED:
            raise InvalidTransitionError(f"Order {order.id} is already processed and cannot return to pending")
        return order

    if not receipt_ref:
        raise InvalidTransitionError(f"Order {order.id} cannot be processed without a receipt reference")
    if order.receipt_ref and order.receipt_ref != receipt_ref:
        raise InvalidTransitionError(
            f"Order {order.id} already references receipt {order.receipt_ref}, refusing {receipt_ref}"
        )
    return order.model_copy(update={"status": status, "updated_at": updated_at, "receipt_ref": receipt_ref})


def _load(record: dict) -> Order:
    try:
        return Order.from_record(record)
    except ValidationError as e:
        raise CorruptRecordError(str(record.get("id")), str(e)) from e


class InMemoryLedger:
    """Thread-safe ledger kept in process memory.

    Records are stored in their serialized form, so callers never share
    mutable state with the store.
    """

    def __init__(self):
        """Initialize an empty ledger."""
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()

    def put(self, order: Order) -> None:
        with self._lock:
            if order.id in self._records:
                raise DuplicateOrderError(order.id)
            self._records[order.id] = order.to_record()

    def get(self, order_id: str) -> Order | None:
        with self._lock:
            record = self._records.get(order_id)
        return None if record is None else _load(record)

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        updated_at: datetime,
        receipt_ref: str | None = None,
    ) -> Order:
        with self._lock:
            record = self._records.get(order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            updated = apply_transition(_load(record), status, updated_at, receipt_ref)
            self._records[order_id] = updated.to_record()
        return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class Base(DeclarativeBase):
    """Declarative base for ledger tables."""

    pass


class OrderRecord(Base):
    """Persisted form of an order."""

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    customer = Column(String(200), nullable=False)
    table_number = Column(Integer, nullable=False)
    items = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)
    receipt_ref = Column(String(255), nullable=True)

    def to_record(self) -> dict:
        record = {
            "id": self.id,
            "customer": self.customer,
            "table": self.table_number,
            "items": self.items,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.receipt_ref:
            record["receiptRef"] = self.receipt_ref
        return record


class SqlLedger:
    """Ledger backed by a SQL database through SQLAlchemy.

    Uniqueness of order ids rests on the primary key, so concurrent writers
    in separate processes cannot create the same order twice.
    """

    def __init__(self, database_url: str, timeout: float = 5.0):
        """Create the engine and make sure the orders table exists.

        Args:
            database_url: SQLAlchemy URL, e.g. ``sqlite:///./data/orders.db``
            timeout: Seconds to wait on a locked database before failing
        """
        engine_kwargs = {}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
            else:
                _ensure_sqlite_dir(database_url)
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True

        self.engine = create_engine(database_url, **engine_kwargs)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info(f"Ledger tables ready at {self.engine.url.render_as_string(hide_password=True)}")

    def put(self, order: Order) -> None:
        record = order.to_record()
        row = OrderRecord(
            id=order.id,
            customer=record["customer"],
            table_number=record["table"],
            items=record["items"],
            status=record["status"],
            created_at=record["createdAt"],
            updated_at=record["updatedAt"],
            receipt_ref=record.get("receiptRef"),
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
        except IntegrityError as e:
            raise DuplicateOrderError(order.id) from e
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to save order {order.id}: {e}") from e

    def get(self, order_id: str) -> Order | None:
        try:
            with self._sessions() as session:
                row = session.get(OrderRecord, order_id)
                record = None if row is None else row.to_record()
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to read order {order_id}: {e}") from e
        return None if record is None else _load(record)

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        updated_at: datetime,
        receipt_ref: str | None = None,
    ) -> Order:
        try:
            with self._sessions.begin() as session:
                row = session.get(OrderRecord, order_id, with_for_update=True)
                if row is None:
                    raise OrderNotFoundError(order_id)
                updated = apply_transition(_load(row.to_record()), status, updated_at, receipt_ref)
                record = updated.to_record()
                row.status = record["status"]
                row.updated_at = record["updatedAt"]
                row.receipt_ref = record.get("receiptRef")
        except SQLAlchemyError as e:
            raise LedgerError(f"Failed to update order {order_id}: {e}") from e
        return updated

    def close(self) -> None:
        """Dispose of pooled connections."""
        self.engine.dispose()


def _ensure_sqlite_dir(database_url: str) -> None:
    path = database_url.split(":///", 1)[-1]
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def create_ledger(url: str, timeout: float = 5.0) -> InMemoryLedger | SqlLedger:
    """Build the ledger client selected by ``url``.

    Args:
        url: ``memory://`` for a process-local ledger, otherwise a SQLAlchemy URL
        timeout: Bound on store calls, in seconds

    Returns:
        The ledger client.
    """
    if url == MEMORY_URL:
        logger.warning("Using an in-memory ledger; orders will not survive a restart")
        return InMemoryLedger()
    return SqlLedger(url, timeout=timeout)
