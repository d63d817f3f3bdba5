"""Process-wide logging configuration."""

from __future__ import annotations

import logging

from kisprice.config import settings

_LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once; later calls only adjust the level."""
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT, datefmt="%H:%M:%S")
    else:
        root.setLevel(resolved)
    # httpx logs every request URL at INFO, including query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
