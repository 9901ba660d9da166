# chatsync/core/logging.py

import logging
import sys

from chatsync.core.config import settings


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Client libraries that log every command / connection at DEBUG
QUIET_LOGGERS = ("redis", "redis.asyncio", "redis.asyncio.connection", "asyncio", "websockets", "multipart")


def _level(name: str) -> int:
    return getattr(logging, name, logging.INFO)


def setup_logging() -> None:
    """
    Configure logging for the chatsync service.

    - Root level from LOG_LEVEL, the ``chatsync`` package from
      CHATSYNC_LOG_LEVEL (defaults to LOG_LEVEL)
    - Logs go to stdout
    - Redis client, websocket and access-log chatter is kept at WARNING
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_level(settings.LOG_LEVEL))
    logging.getLogger("chatsync").setLevel(_level(settings.CHATSYNC_LOG_LEVEL))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # Uvicorn may already have installed handlers; don't add a second one
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Logger under the service's configuration.

    Usage:
        from chatsync.core.logging import get_logger

        logger = get_logger(__name__)
        logger.info("Room created")
    """
    return logging.getLogger(name)
