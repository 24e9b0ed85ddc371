"""
Structured logging configuration using structlog.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from shared.config.settings import Settings

APP_NAME = "booster-queue"

# Client libraries that log every request or frame at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "aio_pika", "aiormq")


def static_context(**context: Any) -> Processor:
    """
    Build a processor that adds fixed key/value context to every event.

    Args:
        **context: Keys to add; None values are skipped

    Returns:
        structlog processor
    """
    fields = {key: value for key, value in context.items() if value is not None}

    def add_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_context


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: str | None = None,
    environment: str | None = None,
) -> None:
    """
    Setup structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines (True) or colored console output (False)
        service_name: Service name to include in logs
        environment: Deployment environment to include in logs
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        static_context(app=APP_NAME, service=service_name, environment=environment),
    ]

    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings: Settings) -> None:
    """
    Setup logging from application settings.

    Debug mode forces DEBUG level and console output.

    Args:
        settings: Application settings
    """
    setup_logging(
        log_level="DEBUG" if settings.debug else settings.log_level,
        json_logs=settings.json_logs and not settings.debug,
        service_name=settings.service_name,
        environment=settings.environment,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)
