"""Test fixtures for the fulfillment worker tests."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fulfillment_worker.archive import InMemoryDocumentStore
from fulfillment_worker.worker import FulfillmentWorker
from order_common.ledger import InMemoryLedger
from order_common.schemas import Order, OrderItem

CREATED_AT = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)
FULFILLED_AT = datetime(2025, 5, 1, 12, 5, tzinfo=timezone.utc)


@pytest.fixture
def fulfilled_at():
    """The timestamp the worker clock always returns."""
    return FULFILLED_AT


@pytest.fixture
def make_order():
    """Factory for pending orders with ``n`` distinct items."""

    def factory(order_id="order-1", n_items=1, customer="Ana", table=3):
        items = [
            OrderItem(name=f"Item {i}", quantity=2, unit_price=Decimal("5.00")) for i in range(1, n_items + 1)
        ]
        return Order(
            id=order_id,
            customer=customer,
            table=table,
            items=items,
            created_at=CREATED_AT,
            updated_at=CREATED_AT,
        )

    return factory


@pytest.fixture
def ledger():
    """An empty in-memory ledger."""
    return InMemoryLedger()


@pytest.fixture
def documents():
    """An empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def announcer(mocker):
    """An announcer double recording announced orders."""
    return mocker.MagicMock()


@pytest.fixture
def worker(ledger, documents, announcer):
    """A worker wired to the test doubles with a fixed clock."""
    worker = FulfillmentWorker(
        ledger=ledger,
        documents=documents,
        announcer=announcer,
        clock=lambda: FULFILLED_AT,
        parallelism=4,
        batch_deadline=5.0,
    )
    yield worker
    worker.close()
