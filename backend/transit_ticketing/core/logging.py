"""
Structured logging configuration using structlog.

Every event carries the service name and environment next to the request
context bound by the middleware, so log lines from both stores' code paths
can be joined on request_id. Records emitted through plain stdlib loggers
(uvicorn, SQLAlchemy, redis) go through the same pre-chain and come out in
the same format.
"""

import logging
import sys

import structlog
from structlog.typing import Processor

from transit_ticketing.core.config import Settings, get_settings

# Third-party loggers and the level they are capped at
THIRD_PARTY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
    "redis": logging.WARNING,
}


def _service_context(settings: Settings):
    service = {"service": settings.APP_NAME, "environment": settings.ENVIRONMENT}

    def add_service_context(logger, method_name, event_dict):
        for key, value in service.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def _renderer(settings: Settings) -> tuple[list, Processor]:
    """Return (extra processors, final renderer) for the environment."""
    if settings.ENVIRONMENT == "production":
        return [structlog.processors.dict_tracebacks], structlog.processors.JSONRenderer()
    return [], structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging() -> None:
    settings = get_settings()
    extra_processors, renderer = _renderer(settings)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_context(settings),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            *extra_processors,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    # Idempotent: existing root handlers are replaced
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
