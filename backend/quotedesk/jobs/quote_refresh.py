from __future__ import annotations

import asyncio
import logging

from quotedesk.config.logging_config import setup_logging
from quotedesk.engine import QuoteEngine

logger = logging.getLogger(__name__)


async def _refresh(symbols: list[str], engine: QuoteEngine | None = None) -> int:
    owned = engine is None
    engine = engine or QuoteEngine()
    try:
        quotes = await engine.refresh_quotes(symbols)
    finally:
        if owned:
            await engine.aclose()
    live = sum(1 for quote in quotes if quote.source != "fallback")
    logger.info("Refreshed %d/%d quotes from live providers", live, len(quotes))
    return live


def run_quote_refresh(symbols: list[str]) -> int:
    setup_logging()
    return asyncio.run(_refresh(list(dict.fromkeys(symbols))))
