"""Logging setup shared by the API server and the maintenance CLI."""

import logging
from typing import Optional

from config import LOG_FORMAT, LOG_LEVEL


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL setting.
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # SQL echo is far too noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
