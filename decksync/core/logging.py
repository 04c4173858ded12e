"""
structlog setup shared by the API process and the Celery worker.
"""
import logging
import sys
from typing import Optional

import structlog

from decksync.core.config import settings

# Libraries that log once per request or statement during a sync run
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(debug: Optional[bool] = None):
    """
    Configure structlog and the stdlib root logger.

    Args:
        debug: Human readable console output at DEBUG level. Defaults to
            ``settings.api_debug``; otherwise one JSON object per line at INFO.
    """
    if debug is None:
        debug = settings.api_debug
    level = logging.DEBUG if debug else logging.INFO

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
