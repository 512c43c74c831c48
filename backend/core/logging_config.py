"""Structured logging configuration using structlog.

Engine modules log through ``structlog.get_logger(__name__)`` with
key/value context (execution_id, step_index, ...); API and worker glue
uses stdlib ``logging``. Both end up in the same handler, rendered as
JSON in production and as colored console lines in development.
"""

import logging
import sys

import structlog
from app.config import get_settings

_configured = False


def setup_logging(force: bool = False) -> None:
    """Configure logging once per process (API or Celery worker).

    Args:
        force: Reconfigure even if already done (tests)
    """
    global _configured
    if _configured and not force:
        return
    settings = get_settings()

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.LOG_FORMAT == "text" or (settings.is_development and settings.LOG_FORMAT != "json"):
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Third-party noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.SQLALCHEMY_ECHO else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    _configured = True
