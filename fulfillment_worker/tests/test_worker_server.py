"""Tests for the fulfillment worker HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from fulfillment_worker.server import app, state
from fulfillment_worker.worker import BatchReport, TaskOutcome, TaskResult


@pytest.fixture
def test_client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def running_consumer(mocker):
    """Install a consumer double in the worker state."""
    consumer = mocker.MagicMock()
    consumer.stats = {"batches": 2, "processed": 3, "skipped": 1, "failed": 0, "start_time": 0.0}
    consumer.last_report = BatchReport(outcomes=[TaskOutcome(task_id="t1", order_id="abc", result=TaskResult.SKIPPED)])
    state.consumer = consumer
    yield consumer
    state.consumer = None


def test_health_check(test_client):
    """Test the health check endpoint."""
    response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_check(test_client, mocker):
    """Test readiness when Kafka answers metadata requests."""
    mocker.patch("fulfillment_worker.server.AdminClient").return_value.list_topics.return_value = object()

    response = test_client.get("/health/ready")

    assert response.json() == {"status": "ready", "kafka": "connected"}


def test_readiness_check_kafka_down(test_client, mocker):
    """Test readiness when Kafka is unreachable."""
    mocker.patch("fulfillment_worker.server.AdminClient").side_effect = Exception("unreachable")

    response = test_client.get("/health/ready")

    assert response.json() == {"status": "not ready", "kafka": "disconnected"}


def test_stats(test_client, running_consumer):
    """Test that statistics include the last batch outcome."""
    response = test_client.get("/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["batches"] == 2
    assert "start_time" not in body
    assert body["last_batch"]["outcomes"][0]["result"] == "skipped"


def test_stats_without_consumer(test_client):
    """Test that statistics are unavailable before the consumer starts."""
    state.consumer = None

    response = test_client.get("/stats")

    assert response.status_code == 503
