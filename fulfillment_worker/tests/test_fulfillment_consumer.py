"""Tests for the batch consumer's offset settling."""

import pytest
from confluent_kafka import Consumer, KafkaError, KafkaException

from fulfillment_worker.consumer import FulfillmentConsumer
from fulfillment_worker.worker import BatchReport, TaskOutcome, TaskResult


@pytest.fixture
def mock_kafka_consumer(mocker):
    """Mock the Kafka consumer."""
    consumer_mock = mocker.MagicMock(spec=Consumer)
    mocker.patch("fulfillment_worker.consumer.Consumer", return_value=consumer_mock)
    return consumer_mock


@pytest.fixture
def worker(mocker):
    """A worker double returning a preset report."""
    return mocker.MagicMock()


@pytest.fixture
def consumer(mock_kafka_consumer, worker):
    """A fulfillment consumer around the mocked Kafka consumer."""
    return FulfillmentConsumer(
        bootstrap_servers="dump:9092",
        group_id="fulfillment-worker",
        worker=worker,
        topic="orders.fulfillment",
        batch_size=10,
        redelivery_backoff=0,
    )


def _message(mocker, partition, offset, value=b'{"id":"abc"}', error=None):
    msg = mocker.MagicMock()
    msg.topic.return_value = "orders.fulfillment"
    msg.partition.return_value = partition
    msg.offset.return_value = offset
    msg.value.return_value = value
    msg.error.return_value = error
    return msg


def _report(*results):
    return BatchReport(
        outcomes=[TaskOutcome(task_id=str(i), result=result) for i, result in enumerate(results)]
    )


def test_consumer_configuration(mocker, worker):
    """Test that offsets are committed manually."""
    consumer_class = mocker.patch("fulfillment_worker.consumer.Consumer")

    FulfillmentConsumer(bootstrap_servers="dump:9092", group_id="group", worker=worker)

    config = consumer_class.call_args.args[0]
    assert config["enable.auto.commit"] is False
    assert config["bootstrap.servers"] == "dump:9092"
    assert config["group.id"] == "group"


def test_batch_is_handed_to_worker(consumer, mock_kafka_consumer, worker, mocker):
    """Test that messages become deliveries identified by topic, partition and offset."""
    mock_kafka_consumer.consume.return_value = [_message(mocker, 0, 4), _message(mocker, 1, 9, value=None)]
    worker.process_batch.return_value = _report(TaskResult.PROCESSED, TaskResult.PERMANENT_FAILURE)

    consumer.process_batch()

    mock_kafka_consumer.consume.assert_called_once_with(num_messages=10, timeout=1.0)
    deliveries = worker.process_batch.call_args.args[0]
    assert [d.task_id for d in deliveries] == ["orders.fulfillment:0:4", "orders.fulfillment:1:9"]
    assert deliveries[0].body == b'{"id":"abc"}'
    assert deliveries[1].body == b""


def test_successful_batch_is_committed(consumer, mock_kafka_consumer, worker, mocker):
    """Test that a batch without retryable failures is acknowledged."""
    mock_kafka_consumer.consume.return_value = [_message(mocker, 0, 1), _message(mocker, 0, 2)]
    worker.process_batch.return_value = _report(TaskResult.PROCESSED, TaskResult.PERMANENT_FAILURE)

    consumer.process_batch()

    mock_kafka_consumer.commit.assert_called_once_with(asynchronous=False)
    mock_kafka_consumer.seek.assert_not_called()
    assert consumer.stats["processed"] == 1
    assert consumer.stats["failed"] == 1


def test_retryable_failure_rewinds_batch(consumer, mock_kafka_consumer, worker, mocker):
    """Test that a batch with a transient failure is sought back for redelivery."""
    mock_kafka_consumer.consume.return_value = [
        _message(mocker, 0, 5),
        _message(mocker, 1, 12),
        _message(mocker, 0, 6),
        _message(mocker, 1, 11),
    ]
    worker.process_batch.return_value = _report(
        TaskResult.PROCESSED, TaskResult.TRANSIENT_FAILURE, TaskResult.SKIPPED, TaskResult.PROCESSED
    )

    consumer.process_batch()

    mock_kafka_consumer.commit.assert_not_called()
    positions = sorted(
        (c.args[0].topic, c.args[0].partition, c.args[0].offset) for c in mock_kafka_consumer.seek.call_args_list
    )
    assert positions == [("orders.fulfillment", 0, 5), ("orders.fulfillment", 1, 11)]
    assert consumer.stats["redelivered_batches"] == 1


def test_broker_errors_are_dropped(consumer, mock_kafka_consumer, worker, mocker):
    """Test that end-of-partition events and broker errors never reach the worker."""
    eof = mocker.MagicMock()
    eof.code.return_value = KafkaError._PARTITION_EOF
    broken = mocker.MagicMock()
    broken.code.return_value = KafkaError._TRANSPORT
    mock_kafka_consumer.consume.return_value = [
        _message(mocker, 0, 1, error=eof),
        _message(mocker, 0, 2, error=broken),
    ]

    assert consumer.process_batch() is None

    worker.process_batch.assert_not_called()
    mock_kafka_consumer.commit.assert_not_called()
    assert consumer.stats["errors"] == 1


def test_empty_poll(consumer, mock_kafka_consumer, worker):
    """Test that an empty poll does nothing."""
    mock_kafka_consumer.consume.return_value = []

    assert consumer.process_batch() is None
    worker.process_batch.assert_not_called()


def test_commit_failure_is_logged(consumer, mock_kafka_consumer, worker, mocker):
    """Test that a failed commit does not stop the consumer."""
    mock_kafka_consumer.consume.return_value = [_message(mocker, 0, 1)]
    mock_kafka_consumer.commit.side_effect = KafkaException("rebalance")
    worker.process_batch.return_value = _report(TaskResult.PROCESSED)

    report = consumer.process_batch()

    assert report.succeeded == 1
    assert consumer.stats["errors"] == 1


def test_stop_closes_consumer(consumer, mock_kafka_consumer):
    """Test that a stopped consumer closes its Kafka client."""
    consumer.stop()

    consumer.process_messages()

    mock_kafka_consumer.consume.assert_not_called()
    mock_kafka_consumer.close.assert_called_once()
