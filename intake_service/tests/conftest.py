"""Test fixtures for the intake service tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from intake_service.server import app, get_intake_service
from intake_service.service import IntakeService
from order_common.ledger import InMemoryLedger

FIXED_NOW = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    """The timestamp the test clock always returns."""
    return FIXED_NOW


@pytest.fixture
def valid_request():
    """The canonical single-item submission."""
    return {"customer": "Ana", "items": [{"name": "X", "quantity": 2, "unitPrice": 5.00}], "table": 3}


@pytest.fixture
def ledger():
    """An empty in-memory ledger."""
    return InMemoryLedger()


@pytest.fixture
def queue():
    """A work queue double recording enqueued tasks."""
    return MagicMock()


@pytest.fixture
def service(ledger, queue):
    """An intake service wired to the test ledger and queue."""
    return IntakeService(ledger=ledger, queue=queue, clock=lambda: FIXED_NOW)


@pytest.fixture
def test_client(service):
    """A test client whose intake service is the test service."""
    app.dependency_overrides[get_intake_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
