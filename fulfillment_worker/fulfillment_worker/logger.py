"""Logger module for the fulfillment worker."""

import os

from logging_utils.config import setup_service_logger

logger = setup_service_logger(
    "fulfillment-worker",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE"),
)

__all__ = ["logger"]
