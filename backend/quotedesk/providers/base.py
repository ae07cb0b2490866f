from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from quotedesk.errors import (
    ProviderMalformedResponse,
    ProviderTimeout,
    ProviderTransportError,
)
from quotedesk.schemas.quote import Quote, QuoteSource

logger = logging.getLogger(__name__)


@runtime_checkable
class QuoteProvider(Protocol):
    provider_id: str

    async def fetch_one(self, symbol: str) -> Quote: ...

    async def fetch_many(self, symbols: list[str]) -> list[Quote]: ...

    async def aclose(self) -> None: ...


def to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> int | None:
    number = to_float(value)
    return int(number) if number is not None else None


def to_str(provider_id: str, field: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProviderMalformedResponse(
            provider_id, f"{field} is {type(value).__name__}, expected text"
        )
    return value.strip() or None


def build_quote(
    provider_id: str,
    source: QuoteSource,
    *,
    symbol: str,
    name: str | None,
    price: float | None,
    previous_close: float | None = None,
    change: float | None = None,
    change_percent: float | None = None,
    volume: int | None = None,
    market_cap: float | None = None,
    high: float | None = None,
    low: float | None = None,
    open_price: float | None = None,
    market: str | None = None,
    currency: str | None = None,
) -> Quote:
    """Normalize upstream values into a Quote, deriving what the upstream omitted."""
    if price is None or price < 0:
        raise ProviderMalformedResponse(provider_id, f"no usable price for {symbol}")
    if previous_close is None:
        previous_close = price - change if change is not None else price
    if change is None:
        change = price - previous_close
    if change_percent is None:
        change_percent = change / previous_close * 100 if previous_close else 0.0
    name = to_str(provider_id, "name", name)
    market = to_str(provider_id, "market", market)
    currency = to_str(provider_id, "currency", currency)
    try:
        return Quote(
            symbol=symbol,
            name=name or symbol.upper(),
            price=price,
            change=round(change, 4),
            change_percent=round(change_percent, 4),
            previous_close=previous_close,
            volume=volume or 0,
            market_cap=market_cap,
            high=high if high is not None else price,
            low=low if low is not None else price,
            open=open_price if open_price is not None else price,
            market=market,
            currency=currency,
            source=source,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise ProviderMalformedResponse(
            provider_id, f"invalid quote for {symbol}: {exc}"
        ) from exc


class HttpQuoteProvider:
    """Shared transport for HTTP adapters: one client, one timeout, typed errors."""

    provider_id = "http"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        client: httpx.AsyncClient | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds), headers=headers
        )

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await asyncio.wait_for(
                self._client.get(url, params=params), timeout=self.timeout_seconds
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ProviderTimeout(self.provider_id, self.timeout_seconds) from exc
        except httpx.HTTPError as exc:
            raise ProviderTransportError(self.provider_id, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 400:
            status = "rate limited" if response.status_code == 429 else "HTTP error"
            raise ProviderTransportError(
                self.provider_id,
                f"{status} {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderMalformedResponse(self.provider_id, f"invalid JSON from {path}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
