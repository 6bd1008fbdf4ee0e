"""
structlog setup for the ledger service.

Called once from the app lifespan. Standard-library loggers (tenacity retry
warnings, alembic, SQLAlchemy) are routed to stdout at the same level so a
retrying e-mail send shows up next to the ledger events it belongs to.
"""

import logging
import sys
from typing import Optional

import structlog

from procurement.config import settings


def setup_logging(log_level: Optional[str] = None) -> None:
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(format="%(levelname)s %(name)s %(message)s", stream=sys.stdout, level=level)
    # engine echo is noisy at INFO; lock waits surface as ledger events instead
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    if settings.ENVIRONMENT == "development":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
