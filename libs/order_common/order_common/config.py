"""Runtime configuration for the order pipeline services.

Settings are read from the environment once, at process start, and passed
explicitly to every client and service.
"""

import os

from pydantic import BaseModel, Field


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class PipelineSettings(BaseModel):
    """Endpoints, topics and limits shared by the intake service and the worker."""

    kafka_bootstrap_servers: str = "kafka:9092"
    fulfillment_topic: str = "orders.fulfillment"
    announcement_topic: str = "orders.ready"
    consumer_group: str = "fulfillment-worker"
    ledger_url: str = "sqlite:///./data/orders.db"
    document_store_url: str = "http://localstack:4566"
    receipt_bucket: str = "receipts"
    batch_size: int = Field(10, gt=0)
    batch_deadline_seconds: float = Field(60.0, gt=0)
    worker_parallelism: int = Field(4, gt=0)
    call_timeout_seconds: float = Field(5.0, gt=0)
    archive_retries: int = Field(3, ge=0)
    announcement_kinds: list[str] = ["ready"]
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from environment variables, falling back to defaults.

        Returns:
            PipelineSettings: The validated settings.
        """
        env = {
            "kafka_bootstrap_servers": os.getenv("KAFKA_BOOTSTRAP_SERVERS"),
            "fulfillment_topic": os.getenv("FULFILLMENT_TOPIC"),
            "announcement_topic": os.getenv("ANNOUNCEMENT_TOPIC"),
            "consumer_group": os.getenv("KAFKA_CONSUMER_GROUP"),
            "ledger_url": os.getenv("LEDGER_URL"),
            "document_store_url": os.getenv("DOCUMENT_STORE_URL"),
            "receipt_bucket": os.getenv("RECEIPT_BUCKET"),
            "batch_size": os.getenv("BATCH_SIZE"),
            "batch_deadline_seconds": os.getenv("BATCH_DEADLINE_SECONDS"),
            "worker_parallelism": os.getenv("WORKER_PARALLELISM"),
            "call_timeout_seconds": os.getenv("CALL_TIMEOUT_SECONDS"),
            "archive_retries": os.getenv("ARCHIVE_RETRIES"),
            "log_level": os.getenv("LOG_LEVEL"),
            "log_file": os.getenv("LOG_FILE"),
        }
        kinds = os.getenv("ANNOUNCEMENT_KINDS")
        if kinds:
            env["announcement_kinds"] = _csv(kinds)
        return cls(**{key: value for key, value in env.items() if value is not None})
