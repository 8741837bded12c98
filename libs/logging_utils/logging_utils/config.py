"""Logging configuration module for the order pipeline services."""

import sys
from typing import Optional

from loguru import logger as loguru_logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[service]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
) -> loguru_logger:
    """Configure a logger for a service with standardized settings.

    Args:
        service_name: Name of the service (e.g., 'intake-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to log file

    Returns:
        logger: Configured loguru logger instance bound to the service name
    """
    loguru_logger.remove()
    loguru_logger.configure(extra={"service": service_name})

    loguru_logger.add(
        sys.stderr,
        level=log_level,
        format=_CONSOLE_FORMAT,
        colorize=True,
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        loguru_logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[service]} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="1 week",
            compression="gz",
        )

    return loguru_logger.bind(service=service_name)


def get_kafka_logger(service_name: str) -> loguru_logger:
    """Get a logger bound to the Kafka context of a service.

    Unlike ``setup_service_logger`` this does not touch the configured sinks,
    so modules can call it at import time.

    Args:
        service_name: Name of the service

    Returns:
        logger: Logger bound with Kafka context
    """
    return loguru_logger.bind(service=f"{service_name}.kafka")
