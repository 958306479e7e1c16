"""Centralized logging configuration for the webhook service."""

from __future__ import annotations

import logging

from nova_webhooks.core.settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level_name: str | None = None) -> None:
    """Configure the root logger with a single console handler.

    Existing root handlers are replaced so repeated calls (reloads, tests)
    do not duplicate output.
    """
    level_name = (level_name or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    # httpx logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.debug else logging.WARNING)
