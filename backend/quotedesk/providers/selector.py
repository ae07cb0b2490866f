from __future__ import annotations

import logging
from typing import Sequence

from quotedesk.breaker import ProviderHealthTracker
from quotedesk.errors import AllProvidersExhausted, ProviderError
from quotedesk.providers.base import QuoteProvider
from quotedesk.schemas.quote import Quote

logger = logging.getLogger(__name__)


class ProviderChain:
    """Live providers in priority order, gated by their circuit breakers.

    A skipped (open) provider is recorded as a failure just like a failed call.
    """

    def __init__(self, providers: Sequence[QuoteProvider], health: ProviderHealthTracker) -> None:
        self.providers = list(providers)
        self.health = health

    def _eligible(self, provider: QuoteProvider) -> bool:
        if self.health.should_skip(provider.provider_id):
            logger.debug("Skipping %s: circuit open", provider.provider_id)
            self.health.record_failure(provider.provider_id)
            return False
        return True

    async def resolve_one(self, symbol: str) -> Quote:
        for provider in self.providers:
            if not self._eligible(provider):
                continue
            try:
                quote = await provider.fetch_one(symbol)
            except ProviderError as exc:
                logger.warning(
                    "Provider %s failed for %s: %s", provider.provider_id, symbol, exc.message
                )
                self.health.record_failure(provider.provider_id)
                continue
            self.health.record_success(provider.provider_id)
            return quote
        raise AllProvidersExhausted([symbol])

    async def resolve_many(self, symbols: Sequence[str]) -> dict[str, Quote]:
        """Resolve what the live providers can; uncovered symbols are absent from the result."""
        resolved: dict[str, Quote] = {}
        remaining = list(dict.fromkeys(symbols))
        for provider in self.providers:
            if not remaining:
                break
            if not self._eligible(provider):
                continue
            try:
                quotes = await provider.fetch_many(remaining)
            except ProviderError as exc:
                logger.warning(
                    "Provider %s bulk fetch failed for %d symbols: %s",
                    provider.provider_id,
                    len(remaining),
                    exc.message,
                )
                self.health.record_failure(provider.provider_id)
                continue

            wanted = set(remaining)
            covered = {quote.symbol: quote for quote in quotes if quote.symbol in wanted}
            if covered:
                self.health.record_success(provider.provider_id)
            else:
                self.health.record_failure(provider.provider_id)
            resolved.update(covered)
            remaining = [symbol for symbol in remaining if symbol not in covered]
            if remaining:
                logger.info(
                    "Provider %s did not cover %s", provider.provider_id, ", ".join(remaining)
                )
        return resolved
