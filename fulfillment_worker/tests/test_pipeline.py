"""End-to-end tests: intake, queue hand-off and fulfillment."""

import json
from unittest.mock import MagicMock

import pytest

from fulfillment_worker.announcer import Announcer
from fulfillment_worker.worker import Delivery, FulfillmentWorker, TaskResult
from intake_service.service import IntakeService
from order_common.ledger import SqlLedger
from order_common.schemas import OrderStatus


class RecordingQueue:
    """Work queue collecting message bodies in enqueue order."""

    def __init__(self):
        self.messages = []

    def enqueue(self, task):
        self.messages.append(task.to_message())

    def drain(self):
        deliveries = [Delivery(task_id=f"task-{i}", body=body) for i, body in enumerate(self.messages)]
        self.messages = []
        return deliveries


@pytest.fixture
def mock_producer(mocker):
    """Patch the announcement producer to acknowledge every message."""
    producer = mocker.patch("fulfillment_worker.announcer.Producer").return_value
    producer.flush.return_value = 0

    def produce(topic, key, value, headers, callback):
        callback(None, MagicMock())

    producer.produce.side_effect = produce
    return producer


@pytest.fixture
def sql_ledger():
    """A SQL ledger shared by both services."""
    ledger = SqlLedger("sqlite://")
    yield ledger
    ledger.close()


def test_order_is_fulfilled_end_to_end(sql_ledger, documents, mock_producer, fulfilled_at):
    """Test that a submitted order ends processed, archived and announced."""
    queue = RecordingQueue()
    intake = IntakeService(ledger=sql_ledger, queue=queue)
    worker = FulfillmentWorker(
        ledger=sql_ledger,
        documents=documents,
        announcer=Announcer("dump:9092", kinds=("ready", "staff")),
        clock=lambda: fulfilled_at,
    )

    order = intake.submit_order(
        {"customer": "Ana", "items": [{"name": "X", "quantity": 2, "unitPrice": 5.00}], "table": 3}
    )
    assert sql_ledger.get(order.id).status is OrderStatus.PENDING

    report = worker.process_batch(queue.drain())

    assert [o.result for o in report.outcomes] == [TaskResult.PROCESSED]
    stored = sql_ledger.get(order.id)
    assert stored.status is OrderStatus.PROCESSED
    assert stored.receipt_ref == f"{order.id}.pdf"
    assert documents.get(stored.receipt_ref).startswith(b"%PDF")

    ready, staff = (json.loads(c.kwargs["value"]) for c in mock_producer.produce.call_args_list)
    assert ready["id"] == order.id
    assert ready["total"] == "10.00"
    assert ready["status"] == "Processed"
    assert staff["items"] == [{"name": "X", "quantity": 2, "subtotal": "10.00"}]


def test_redelivered_and_rescheduled_tasks_are_noops(sql_ledger, documents, mock_producer, fulfilled_at):
    """Test that duplicate tasks for a processed order leave every store untouched."""
    queue = RecordingQueue()
    intake = IntakeService(ledger=sql_ledger, queue=queue)
    worker = FulfillmentWorker(
        ledger=sql_ledger,
        documents=documents,
        announcer=Announcer("dump:9092"),
        clock=lambda: fulfilled_at,
    )
    order = intake.submit_order({"customer": "Ana", "items": [{"name": "X", "quantity": 1, "unitPrice": 1}], "table": 1})
    [delivery] = queue.drain()
    worker.process_batch([delivery])

    report = worker.process_batch([delivery, delivery])

    assert [o.result for o in report.outcomes] == [TaskResult.SKIPPED, TaskResult.SKIPPED]
    assert documents.writes == 1
    assert mock_producer.produce.call_count == 1
    assert intake.reschedule(order.id) is False
    assert queue.messages == []
