import logging
import sys

import logfire
import structlog

from app.config.config import settings


def configure_logging() -> structlog.stdlib.BoundLogger:
    """Configure structlog for the application.

    Console output in development, JSON everywhere else. When a Logfire token
    is configured, events are also shipped to Logfire.
    """
    level = logging.DEBUG if settings.DEBUG else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.LOGFIRE_TOKEN:
        logfire.configure(
            token=settings.LOGFIRE_TOKEN,
            service_name=settings.APP_NAME,
            environment=settings.ENVIRONMENT,
        )
        processors.append(logfire.StructlogProcessor())

    if settings.ENVIRONMENT == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("fast_haazir")


logger = configure_logging()
