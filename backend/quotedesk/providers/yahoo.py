from __future__ import annotations

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from quotedesk.config.settings import ProviderSettings
from quotedesk.errors import ProviderError, ProviderMalformedResponse
from quotedesk.providers.base import HttpQuoteProvider, build_quote, to_float, to_int
from quotedesk.schemas.quote import Quote

logger = logging.getLogger(__name__)

_CHART_PATH = "/v8/finance/chart/{symbol}"
_CHART_PARAMS = {"interval": "1d", "range": "1d"}


def _first(values: Any) -> Any:
    if isinstance(values, list) and values:
        return values[0]
    return None


class YahooChartProvider(HttpQuoteProvider):
    """Secondary provider: public chart endpoint, one symbol per request."""

    provider_id = "secondary"

    def __init__(self, config: ProviderSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(
            config.yahoo_base_url,
            config.yahoo_timeout_seconds,
            client=client,
            user_agent=config.user_agent,
        )
        self.request_delay_seconds = config.yahoo_request_delay_seconds
        self.max_concurrency = max(1, config.yahoo_max_concurrency)
        self._pace_lock = asyncio.Lock()
        self._next_start = 0.0

    def _parse(self, symbol: str, payload: Any) -> Quote:
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise ProviderMalformedResponse(self.provider_id, f"no chart for {symbol}")
        if chart.get("error"):
            error = chart["error"]
            detail = error.get("description") if isinstance(error, dict) else error
            raise ProviderMalformedResponse(self.provider_id, f"{symbol}: {detail}")
        result = _first(chart.get("result"))
        if not isinstance(result, dict) or not isinstance(result.get("meta"), dict):
            raise ProviderMalformedResponse(self.provider_id, f"empty chart result for {symbol}")

        meta = result["meta"]
        indicators = result.get("indicators") or {}
        day = _first(indicators.get("quote")) if isinstance(indicators, dict) else None
        day = day if isinstance(day, dict) else {}

        previous_close = to_float(meta.get("chartPreviousClose"))
        if previous_close is None:
            previous_close = to_float(meta.get("previousClose"))
        return build_quote(
            self.provider_id,
            "secondary",
            symbol=symbol,
            name=meta.get("longName") or meta.get("shortName"),
            price=to_float(meta.get("regularMarketPrice")),
            previous_close=previous_close,
            volume=to_int(meta.get("regularMarketVolume")),
            market_cap=to_float(meta.get("marketCap")),
            high=to_float(meta.get("regularMarketDayHigh")),
            low=to_float(meta.get("regularMarketDayLow")),
            open_price=to_float(_first(day.get("open"))),
            market=meta.get("exchangeName"),
            currency=meta.get("currency"),
        )

    async def fetch_one(self, symbol: str) -> Quote:
        payload = await self._get_json(
            _CHART_PATH.format(symbol=url_quote(symbol, safe="")), dict(_CHART_PARAMS)
        )
        return self._parse(symbol, payload)

    async def _pace(self) -> None:
        async with self._pace_lock:
            now = time.monotonic()
            wait = self._next_start - now
            self._next_start = max(now, self._next_start) + self.request_delay_seconds
        if wait > 0:
            await asyncio.sleep(wait)

    async def fetch_many(self, symbols: list[str]) -> list[Quote]:
        """Fan out single-symbol requests with bounded concurrency and paced starts.

        Symbols whose request fails are left out of the result.
        """
        if not symbols:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(symbol: str) -> Quote | None:
            async with semaphore:
                await self._pace()
                try:
                    return await self.fetch_one(symbol)
                except ProviderError as exc:
                    logger.warning("Secondary fetch failed for %s: %s", symbol, exc.message)
                    return None

        results = await asyncio.gather(*(_one(symbol) for symbol in symbols))
        return [quote for quote in results if quote is not None]
