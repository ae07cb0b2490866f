from __future__ import annotations

from typing import Any
from urllib.parse import quote as url_quote

import httpx

from quotedesk.config.settings import ProviderSettings
from quotedesk.errors import ProviderMalformedResponse
from quotedesk.providers.base import HttpQuoteProvider, build_quote, to_float, to_int
from quotedesk.schemas.quote import Quote

_QUOTE_PATH = "/api/v1/market/quote/{symbol}"
_QUOTES_PATH = "/api/v1/market/quotes"


class AggregatorProvider(HttpQuoteProvider):
    """Primary provider: the internal market-data aggregator service."""

    provider_id = "primary"

    def __init__(self, config: ProviderSettings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(
            config.aggregator_base_url,
            config.aggregator_timeout_seconds,
            client=client,
            user_agent=config.user_agent,
        )

    def _unwrap(self, payload: Any) -> Any:
        if not isinstance(payload, dict):
            raise ProviderMalformedResponse(self.provider_id, "response is not an object")
        if payload.get("success") is False:
            raise ProviderMalformedResponse(
                self.provider_id, str(payload.get("error") or "request unsuccessful")
            )
        if "data" not in payload:
            raise ProviderMalformedResponse(self.provider_id, "response has no data")
        return payload["data"]

    def _parse(self, symbol: str, data: Any) -> Quote:
        if not isinstance(data, dict):
            raise ProviderMalformedResponse(
                self.provider_id, f"quote for {symbol} is not an object"
            )
        price = to_float(data.get("price"))
        if price is None:
            price = to_float(data.get("currentPrice"))
        return build_quote(
            self.provider_id,
            "primary",
            symbol=symbol,
            name=data.get("name"),
            price=price,
            previous_close=to_float(data.get("previousClose")),
            change=to_float(data.get("change")),
            change_percent=to_float(data.get("changePercent")),
            volume=to_int(data.get("volume")),
            market_cap=to_float(data.get("marketCap")),
            high=to_float(data.get("high")),
            low=to_float(data.get("low")),
            open_price=to_float(data.get("open")),
            market=data.get("market"),
            currency=data.get("currency"),
        )

    async def fetch_one(self, symbol: str) -> Quote:
        payload = await self._get_json(_QUOTE_PATH.format(symbol=url_quote(symbol, safe="")))
        return self._parse(symbol, self._unwrap(payload))

    async def fetch_many(self, symbols: list[str]) -> list[Quote]:
        if not symbols:
            return []
        payload = await self._get_json(_QUOTES_PATH, {"symbols": ",".join(symbols)})
        data = self._unwrap(payload)
        if isinstance(data, list):
            data = {
                str(item.get("symbol", "")).upper(): item
                for item in data
                if isinstance(item, dict)
            }
        if not isinstance(data, dict):
            raise ProviderMalformedResponse(self.provider_id, "bulk data is not an object")

        quotes: list[Quote] = []
        for symbol in symbols:
            item = data.get(symbol)
            if item is None:
                continue
            try:
                quotes.append(self._parse(symbol, item))
            except ProviderMalformedResponse:
                # Uncovered symbols are resolved by the next tier.
                continue
        return quotes
