"""FastAPI server hosting the Fulfillment Worker."""

import threading
from contextlib import asynccontextmanager

from confluent_kafka.admin import AdminClient
from fastapi import FastAPI, HTTPException

from order_common.config import PipelineSettings
from order_common.ledger import create_ledger

from .announcer import Announcer
from .archive import create_document_store
from .consumer import FulfillmentConsumer
from .logger import logger
from .worker import FulfillmentWorker


class WorkerState:
    """Class to manage fulfillment worker state."""

    def __init__(self):
        """Initialize worker state from the environment."""
        self.settings = PipelineSettings.from_env()
        self.consumer: FulfillmentConsumer | None = None
        self.thread: threading.Thread | None = None

    def build_consumer(self) -> FulfillmentConsumer:
        """Wire the worker and its consumer from the settings.

        Returns:
            FulfillmentConsumer: Consumer subscribed to the fulfillment topic
        """
        settings = self.settings
        worker = FulfillmentWorker(
            ledger=create_ledger(settings.ledger_url, timeout=settings.call_timeout_seconds),
            documents=create_document_store(
                settings.document_store_url,
                settings.receipt_bucket,
                timeout=settings.call_timeout_seconds,
                retries=settings.archive_retries,
            ),
            announcer=Announcer(
                settings.kafka_bootstrap_servers,
                topic=settings.announcement_topic,
                kinds=settings.announcement_kinds,
                timeout=settings.call_timeout_seconds,
            ),
            parallelism=settings.worker_parallelism,
            batch_deadline=settings.batch_deadline_seconds,
        )
        consumer = FulfillmentConsumer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.consumer_group,
            worker=worker,
            topic=settings.fulfillment_topic,
            batch_size=settings.batch_size,
        )
        consumer.subscribe()
        return consumer

    def stop(self) -> None:
        """Stop the consumer loop and wait for the current batch to settle."""
        if self.consumer is None:
            return
        self.consumer.stop()
        if self.thread is not None:
            self.thread.join(timeout=self.settings.batch_deadline_seconds + 5)
        worker = self.consumer.worker
        worker.close()
        worker.announcer.close()
        if hasattr(worker.documents, "close"):
            worker.documents.close()
        if hasattr(worker.ledger, "close"):
            worker.ledger.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    # Startup: Initialize consumer
    state.consumer = state.build_consumer()

    # Start consumer in background thread
    state.thread = threading.Thread(target=state.consumer.process_messages, daemon=True)
    state.thread.start()
    logger.info(f"Consumer thread started on topic {state.settings.fulfillment_topic}")

    yield  # FastAPI will run the application here

    # Shutdown
    logger.info("Shutting down fulfillment worker...")
    state.stop()
    logger.info("Shutdown complete")


# Initialize FastAPI app and state
state = WorkerState()
app = FastAPI(title="Fulfillment Worker", lifespan=lifespan)


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    running = state.thread is not None and state.thread.is_alive()
    return {"status": "healthy", "consumer_running": running}


@app.get("/health/ready")
def readiness_check():
    """Check if the worker can reach Kafka."""
    try:
        admin = AdminClient({"bootstrap.servers": state.settings.kafka_bootstrap_servers})
        if admin.list_topics(timeout=5) is not None:
            return {"status": "ready", "kafka": "connected"}
    except Exception as e:
        logger.error(f"Kafka connection failed: {e}")
    return {"status": "not ready", "kafka": "disconnected"}


@app.get("/stats")
def get_stats():
    """Return consumer counters and the outcome of the last batch.

    Raises:
        HTTPException: If the consumer is not running
    """
    if state.consumer is None:
        raise HTTPException(status_code=503, detail="Service unavailable")

    stats = {key: value for key, value in state.consumer.stats.items() if key != "start_time"}
    report = state.consumer.last_report
    return {
        **stats,
        "last_batch": None if report is None else report.model_dump(mode="json"),
    }
