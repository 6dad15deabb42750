"""Logging setup for feed_sync.

All modules log through logging.getLogger(__name__) under the "feed_sync"
namespace. Output goes to stderr because stdout carries the STDIO transport.
"""

import logging
import logging.handlers
import sys
from typing import Optional

from feed_sync.config import ServerConfig

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("feed_sync")


def setup_logging(config: Optional[ServerConfig] = None) -> logging.Logger:
    """Configure the feed_sync logger.

    Args:
        config: Server configuration (log level and optional log file)

    Returns:
        The configured package logger
    """
    if config is None:
        config = ServerConfig()

    level = getattr(logging, config.log_level, logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger
