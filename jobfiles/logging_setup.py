"""
Structured logging configuration.

All components log through structlog with event-style names
(e.g. ``version_created``) and keyword fields.
"""

import logging
import sys
from typing import Optional

import structlog

from jobfiles.config import Settings, get_settings


_configured = False


def configure_logging(settings: Optional[Settings] = None, force: bool = False) -> None:
    """
    Configure structlog and the stdlib root handler once per process.

    Args:
        settings: Settings providing log_level and log_json
        force: Reconfigure even if logging was already configured
    """
    global _configured
    if _configured and not force:
        return

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=force)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True
