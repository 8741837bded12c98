"""Test fixtures for the shared order model and store clients."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from order_common.ledger import InMemoryLedger, SqlLedger
from order_common.schemas import Order, OrderItem

CREATED_AT = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_order():
    """A pending order with two lines."""
    return Order(
        id="7d1c6a8e-2b44-4c55-9f1a-0e6a3f1d2c11",
        customer="Ana",
        table=3,
        items=[
            OrderItem(name="Feijoada", quantity=2, unit_price=Decimal("5.00")),
            OrderItem(name="Guarana", quantity=1, unit_price=Decimal("3.50")),
        ],
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
    )


@pytest.fixture(params=["memory", "sql"])
def ledger(request):
    """Each ledger implementation, empty."""
    if request.param == "memory":
        yield InMemoryLedger()
    else:
        sql_ledger = SqlLedger("sqlite://")
        yield sql_ledger
        sql_ledger.close()
