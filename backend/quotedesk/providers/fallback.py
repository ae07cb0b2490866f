from __future__ import annotations

from typing import Dict, NamedTuple

from quotedesk.markets import strip_provider_suffix
from quotedesk.schemas.quote import Quote


class LastKnownPrice(NamedTuple):
    name: str
    price: float
    currency: str
    market: str


LAST_KNOWN_PRICES: Dict[str, LastKnownPrice] = {
    "AAPL": LastKnownPrice("Apple Inc.", 178.50, "USD", "NASDAQ"),
    "MSFT": LastKnownPrice("Microsoft Corp.", 378.91, "USD", "NASDAQ"),
    "GOOGL": LastKnownPrice("Alphabet Inc.", 142.56, "USD", "NASDAQ"),
    "TSLA": LastKnownPrice("Tesla Inc.", 248.50, "USD", "NASDAQ"),
    "AMZN": LastKnownPrice("Amazon.com Inc.", 178.25, "USD", "NASDAQ"),
    "META": LastKnownPrice("Meta Platforms Inc.", 486.35, "USD", "NASDAQ"),
    "NVDA": LastKnownPrice("NVIDIA Corp.", 725.12, "USD", "NASDAQ"),
    "NFLX": LastKnownPrice("Netflix Inc.", 435.80, "USD", "NASDAQ"),
    "JPM": LastKnownPrice("JPMorgan Chase & Co.", 150.75, "USD", "NYSE"),
    "V": LastKnownPrice("Visa Inc.", 245.60, "USD", "NYSE"),
    "JNJ": LastKnownPrice("Johnson & Johnson", 160.80, "USD", "NYSE"),
    "WMT": LastKnownPrice("Walmart Inc.", 165.30, "USD", "NYSE"),
    "SPY": LastKnownPrice("SPDR S&P 500 ETF", 455.23, "USD", "NYSE"),
    "QQQ": LastKnownPrice("Invesco QQQ Trust", 378.45, "USD", "NASDAQ"),
    "VTI": LastKnownPrice("Vanguard Total Stock Market ETF", 245.67, "USD", "NYSE"),
    "CPALL": LastKnownPrice("CP ALL PCL", 65.50, "THB", "SET"),
    "PTT": LastKnownPrice("PTT PCL", 42.75, "THB", "SET"),
    "KBANK": LastKnownPrice("Kasikornbank PCL", 156.00, "THB", "SET"),
    "SCB": LastKnownPrice("Siam Commercial Bank PCL", 128.50, "THB", "SET"),
    "AOT": LastKnownPrice("Airports of Thailand PCL", 68.25, "THB", "SET"),
    "ADVANC": LastKnownPrice("Advanced Info Service PCL", 225.00, "THB", "SET"),
    "BBL": LastKnownPrice("Bangkok Bank PCL", 185.50, "THB", "SET"),
    "BDMS": LastKnownPrice("Bangkok Dusit Medical Services PCL", 32.50, "THB", "SET"),
}


class StaticFallbackTable:
    """Last-known prices, consulted only once every live provider has failed."""

    def __init__(
        self,
        default_price: float = 100.0,
        overrides: Dict[str, float] | None = None,
        prices: Dict[str, LastKnownPrice] | None = None,
    ) -> None:
        self.default_price = default_price
        self._prices = dict(LAST_KNOWN_PRICES if prices is None else prices)
        self._overrides = {symbol.upper(): price for symbol, price in (overrides or {}).items()}

    def _known(self, symbol: str) -> LastKnownPrice | None:
        return self._prices.get(symbol) or self._prices.get(strip_provider_suffix(symbol))

    def __contains__(self, symbol: str) -> bool:
        symbol = symbol.upper()
        return (
            symbol in self._overrides
            or strip_provider_suffix(symbol) in self._overrides
            or self._known(symbol) is not None
        )

    def price(self, symbol: str) -> float:
        symbol = symbol.upper()
        for key in (symbol, strip_provider_suffix(symbol)):
            if key in self._overrides:
                return self._overrides[key]
        known = self._known(symbol)
        return known.price if known else self.default_price

    def quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        known = self._known(symbol)
        price = self.price(symbol)
        return Quote(
            symbol=symbol,
            name=known.name if known else symbol,
            price=price,
            change=0.0,
            change_percent=0.0,
            previous_close=price,
            volume=0,
            high=price,
            low=price,
            open=price,
            market=known.market if known else None,
            currency=known.currency if known else None,
            source="fallback",
        )
