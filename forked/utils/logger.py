"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from forked.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls only adjust the level."""

    global _configured
    resolved_level = (level or get_settings().log_level).upper()
    root = logging.getLogger("forked")
    if _configured:
        if level is not None:
            root.setLevel(resolved_level)
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(resolved_level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``forked`` hierarchy."""
    configure_logging()
    if name == "__main__" or not name.startswith("forked"):
        name = f"forked.{name}"
    return logging.getLogger(name)
