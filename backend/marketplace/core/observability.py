"""Logging setup.

Environment knobs:

- LOG_LEVEL (default: INFO): root logger level
- LOG_FORMAT (default: json): set to ``plain`` for human-readable local runs
"""

from __future__ import annotations

import logging
import os

from pythonjsonlogger.json import JsonFormatter

from .config import settings


def setup_logging() -> None:
    """Configure structured JSON logging."""
    handler = logging.StreamHandler()
    if os.getenv("LOG_FORMAT", "json").strip().lower() == "plain":
        formatter = logging.Formatter("%(levelname)s %(name)s %(message)s")
    else:
        formatter = JsonFormatter("%(levelname)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers = [handler]
    # Prefer process env, then Settings fallback (loaded from .env)
    level_name = (os.getenv("LOG_LEVEL") or getattr(settings, "LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    root.setLevel(level)
    # Quiet Uvicorn's access logger (HTTP request lines) when not debugging
    if level > logging.DEBUG:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
