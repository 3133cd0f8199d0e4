"""
Base Service class for the file lifecycle engine.

All services inherit from this base class which provides:
- Settings resolution
- Logging setup
- Offloading blocking file I/O from the event loop
"""

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Optional

import structlog

from jobfiles.config import Settings, get_settings
from jobfiles.logging_setup import configure_logging


class BaseService:
    """
    Base class for lifecycle services.

    Provides:
    - Settings (uses the global settings if none are passed)
    - A named structured logger
    - Optional file logging
    - run_blocking() for copies, checksums and manifest rewrites
    """

    SERVICE_NAME: str = "base"

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize the service.

        Args:
            settings: Configuration settings (uses global if not provided)
        """
        self.settings = settings or get_settings()
        configure_logging(self.settings)

        self.logger = structlog.get_logger(self.SERVICE_NAME)
        self._setup_file_logging()

    def _setup_file_logging(self):
        """Setup file logging if configured."""
        if not self.settings.log_file:
            return
        stdlib_logger = logging.getLogger(self.SERVICE_NAME)
        if any(isinstance(h, logging.FileHandler) for h in stdlib_logger.handlers):
            return
        file_handler = logging.FileHandler(self.settings.log_file)
        file_handler.setLevel(getattr(logging, self.settings.log_level.upper(), logging.INFO))
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        stdlib_logger.addHandler(file_handler)

    async def run_blocking(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run a blocking callable in the default executor.

        Exceptions raised by func propagate to the awaiting caller.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))
