"""
Quote resolution engine.

Resolution order for every symbol: cache, then an in-flight request for the
same symbol, then the live providers (primary, secondary) behind their
circuit breakers, then the static fallback table. Provider and cache failures
never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Iterable, Mapping

from quotedesk.breaker import ProviderHealthTracker
from quotedesk.cache import QuoteCache, batch_key, market_key
from quotedesk.config.settings import Settings, settings as default_settings
from quotedesk.dedupe import InFlightDeduplicator
from quotedesk.errors import AllProvidersExhausted, InvalidSymbolError
from quotedesk.markets import Market, market_currency, provider_symbol
from quotedesk.providers.aggregator import AggregatorProvider
from quotedesk.providers.base import QuoteProvider
from quotedesk.providers.fallback import StaticFallbackTable
from quotedesk.providers.selector import ProviderChain
from quotedesk.providers.yahoo import YahooChartProvider
from quotedesk.schemas.quote import (
    ApiStatus,
    CacheStats,
    DistributedCacheStats,
    Holding,
    ProviderAvailability,
    Quote,
)

logger = logging.getLogger(__name__)


def _normalize_symbol(symbol: Any) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise InvalidSymbolError(symbol)
    return symbol.strip().upper()


def _settled_result(future: asyncio.Future[Any]) -> Any:
    if not future.done() or future.cancelled() or future.exception() is not None:
        return None
    return future.result()


class QuoteEngine:
    """Resolves quotes for one event loop.

    The redis and HTTP clients bind to the loop that first uses them, so a
    process running several loops builds one engine per loop.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        cache: QuoteCache | None = None,
        health: ProviderHealthTracker | None = None,
        inflight: InFlightDeduplicator | None = None,
        primary: QuoteProvider | None = None,
        secondary: QuoteProvider | None = None,
        fallback: StaticFallbackTable | None = None,
    ) -> None:
        self.config = config or default_settings
        self.cache = cache or QuoteCache(self.config)
        self.health = health or ProviderHealthTracker(self.config.breaker)
        self.inflight = inflight or InFlightDeduplicator()
        self.primary = primary or AggregatorProvider(self.config.providers)
        self.secondary = secondary or YahooChartProvider(self.config.providers)
        self.fallback = fallback or StaticFallbackTable(
            self.config.default_fallback_price, self.config.fallback_prices
        )
        self.chain = ProviderChain([self.primary, self.secondary], self.health)
        self._background: set[asyncio.Future[Any]] = set()

    async def __aenter__(self) -> QuoteEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        running = [*self._background, *self.inflight.cancel_all()]
        for task in self._background:
            task.cancel()
        if running:
            logger.info("Cancelling %d unfinished quote lookups", len(running))
            await asyncio.gather(*running, return_exceptions=True)
        self._background.clear()
        await self.primary.aclose()
        await self.secondary.aclose()
        await self.cache.aclose()

    # single symbol

    async def get_quote(self, symbol: str, timeout: float | None = None) -> Quote:
        symbol = _normalize_symbol(symbol)
        cached = await self.cache.get(market_key(symbol))
        if isinstance(cached, Quote):
            logger.debug("Cache hit for %s", symbol)
            return cached

        pending = self.inflight.dedupe(symbol, lambda: self._resolve_one(symbol))
        if timeout is None:
            return await pending
        try:
            return await asyncio.wait_for(pending, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Deadline of %.2fs passed for %s; serving static fallback", timeout, symbol
            )
            return self.fallback.quote(symbol)

    async def _resolve_one(self, symbol: str) -> Quote:
        try:
            quote = await self.chain.resolve_one(symbol)
        except AllProvidersExhausted as exc:
            logger.warning("%s; serving static fallback", exc.message)
            return self.fallback.quote(symbol)
        except Exception:
            logger.exception("Unexpected error resolving %s; serving static fallback", symbol)
            return self.fallback.quote(symbol)
        await self.cache.set(market_key(symbol), quote, self.config.quote_cache_ttl_seconds)
        return quote

    # batch

    async def get_quotes(self, symbols: Iterable[str], timeout: float | None = None) -> list[Quote]:
        ordered = [_normalize_symbol(symbol) for symbol in symbols]
        if not ordered:
            return []
        unique = list(dict.fromkeys(ordered))

        snapshot = await self.cache.get(batch_key(unique))
        if isinstance(snapshot, list):
            by_symbol = {quote.symbol: quote for quote in snapshot}
            if all(symbol in by_symbol for symbol in unique):
                logger.debug("Batch snapshot hit for %d symbols", len(unique))
                return [by_symbol[symbol] for symbol in ordered]

        hits = await self.cache.mget([market_key(symbol) for symbol in unique])
        found: dict[str, Quote] = {}
        for symbol in unique:
            cached = hits.get(market_key(symbol))
            if isinstance(cached, Quote):
                found[symbol] = cached
        misses = [symbol for symbol in unique if symbol not in found]

        if misses:
            found.update(await self._resolve_misses(misses, timeout))
            if all(quote.source != "fallback" for quote in found.values()):
                await self.cache.set(
                    batch_key(unique),
                    [found[symbol] for symbol in unique],
                    self.config.batch_cache_ttl_seconds,
                )

        return [found[symbol] for symbol in ordered]

    async def _resolve_misses(self, misses: list[str], timeout: float | None) -> dict[str, Quote]:
        claimed = self.inflight.claim(misses)
        waiting = dict(claimed)
        for symbol in misses:
            if symbol not in claimed:
                joined = self.inflight.pending(symbol)
                if joined is not None:
                    waiting[symbol] = joined
        if claimed:
            self._spawn(self._resolve_claimed(claimed))
            logger.debug(
                "Resolving %d symbols, joining %d in-flight",
                len(claimed),
                len(waiting) - len(claimed),
            )

        gathered = asyncio.gather(
            *(asyncio.shield(future) for future in waiting.values()), return_exceptions=True
        )
        try:
            if timeout is None:
                results = await gathered
            else:
                results = await asyncio.wait_for(gathered, timeout)
        except asyncio.TimeoutError:
            logger.warning("Deadline of %.2fs passed for batch; serving static fallback", timeout)
            results = [_settled_result(future) for future in waiting.values()]

        outcome = dict(zip(waiting, results))
        resolved: dict[str, Quote] = {}
        for symbol in misses:
            result = outcome.get(symbol)
            resolved[symbol] = result if isinstance(result, Quote) else self.fallback.quote(symbol)
        return resolved

    async def _resolve_claimed(self, claimed: Mapping[str, asyncio.Future[Any]]) -> None:
        symbols = list(claimed)
        try:
            live = await self.chain.resolve_many(symbols)
            if live:
                await self.cache.mset(
                    {market_key(symbol): quote for symbol, quote in live.items()},
                    self.config.quote_cache_ttl_seconds,
                )
            exhausted = [symbol for symbol in symbols if symbol not in live]
            if exhausted:
                logger.warning(
                    "%s; serving static fallback", AllProvidersExhausted(exhausted).message
                )
        except asyncio.CancelledError as exc:
            for future in claimed.values():
                InFlightDeduplicator.fail(future, exc)
            raise
        except Exception:
            logger.exception(
                "Unexpected error resolving %s; serving static fallback", ", ".join(symbols)
            )
            live = {}
        for symbol, future in claimed.items():
            InFlightDeduplicator.resolve(future, live.get(symbol) or self.fallback.quote(symbol))

    def _spawn(self, work: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(work)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # consumer helpers

    async def get_current_price(self, symbol: str) -> float:
        return (await self.get_quote(symbol)).price

    async def calculate_portfolio_value(
        self, holdings: Iterable[Holding | Mapping[str, Any]], timeout: float | None = None
    ) -> float:
        positions = [Holding.model_validate(holding) for holding in holdings]
        if not positions:
            return 0.0
        quotes = await self.get_quotes([position.symbol for position in positions], timeout=timeout)
        total = Decimal(0)
        for quote, position in zip(quotes, positions):
            total += Decimal(str(quote.price)) * Decimal(str(position.quantity))
        precision = Decimal(1).scaleb(-self.config.portfolio_value_precision)
        return float(total.quantize(precision, rounding=ROUND_HALF_UP))

    async def get_market_quote(self, symbol: str, market: Market | str) -> Quote:
        market = Market(market)
        quote = await self.get_quote(provider_symbol(_normalize_symbol(symbol), market))
        return quote.model_copy(
            update={"market": market.value, "currency": quote.currency or market_currency(market)}
        )

    async def refresh_quotes(self, symbols: Iterable[str]) -> list[Quote]:
        symbols = [_normalize_symbol(symbol) for symbol in symbols]
        for symbol in dict.fromkeys(symbols):
            await self.cache.delete(market_key(symbol))
        await self.cache.delete_pattern("market:batch:*")
        return await self.get_quotes(symbols)

    # cache and provider status

    async def get_cache_stats(self) -> CacheStats:
        key_count = await self.cache.key_count()
        return CacheStats(
            local_size=self.cache.local_size,
            distributed=DistributedCacheStats(connected=self.cache.connected, key_count=key_count),
        )

    async def clear_cache(self, symbol: str | None = None) -> None:
        if symbol is None:
            await self.cache.flush()
            logger.info("Quote cache cleared")
            return
        symbol = _normalize_symbol(symbol)
        await self.cache.delete(market_key(symbol))
        await self.cache.delete_pattern("market:batch:*")
        logger.info("Quote cache cleared for %s", symbol)

    def _availability(self, provider: QuoteProvider) -> ProviderAvailability:
        return ProviderAvailability(
            available=not self.health.should_skip(provider.provider_id),
            failures=self.health.failures(provider.provider_id),
        )

    def get_api_status(self) -> ApiStatus:
        return ApiStatus(
            primary=self._availability(self.primary),
            secondary=self._availability(self.secondary),
        )

    def is_service_available(self) -> bool:
        providers = (self.primary, self.secondary)
        return any(not self.health.should_skip(provider.provider_id) for provider in providers)

    def reset_failure_counts(self) -> None:
        self.health.reset()
        logger.info("Provider failure counts reset")
