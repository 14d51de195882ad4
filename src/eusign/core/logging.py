"""Logging setup for processes embedding EUSign.

Library modules only create module-level loggers; the embedding process
calls configure_logging() once at startup.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the standard EUSign format.

    Args:
        level: Logging level name; unknown names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).debug("Logging configured at level %s", level.upper())
