"""Logging configuration."""

from __future__ import annotations

import logging
import sys

from quotedesk.config.settings import Settings, settings as default_settings


def setup_logging(config: Settings | None = None) -> None:
    """Configure root logging for processes that embed the quote engine."""
    config = config or default_settings

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
