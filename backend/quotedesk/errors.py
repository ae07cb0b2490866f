"""Error taxonomy for quote resolution.

Provider and cache errors are internal: the engine records and absorbs them,
callers only ever see ``InvalidSymbolError`` for bad arguments.
"""

from __future__ import annotations


class QuoteDeskError(Exception):
    """Base exception for quotedesk errors."""

    def __init__(self, message: str, code: str = "QUOTEDESK_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidSymbolError(QuoteDeskError, ValueError):
    def __init__(self, symbol: object) -> None:
        super().__init__(f"Invalid symbol: {symbol!r}", code="INVALID_SYMBOL")


class ProviderError(QuoteDeskError):
    """A provider call failed; counted against the provider's circuit."""

    def __init__(self, provider_id: str, message: str, code: str = "PROVIDER_ERROR") -> None:
        self.provider_id = provider_id
        super().__init__(f"{provider_id}: {message}", code=code)


class ProviderTimeout(ProviderError):
    def __init__(self, provider_id: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            provider_id, f"timed out after {timeout_seconds}s", code="PROVIDER_TIMEOUT"
        )


class ProviderTransportError(ProviderError):
    def __init__(self, provider_id: str, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(provider_id, message, code="PROVIDER_TRANSPORT")

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class ProviderMalformedResponse(ProviderError):
    def __init__(self, provider_id: str, message: str) -> None:
        super().__init__(provider_id, message, code="PROVIDER_MALFORMED")


class CacheTierUnavailable(QuoteDeskError):
    def __init__(self, message: str = "Distributed cache unavailable") -> None:
        super().__init__(message, code="CACHE_UNAVAILABLE")


class AllProvidersExhausted(QuoteDeskError):
    def __init__(self, symbols: list[str]) -> None:
        self.symbols = symbols
        super().__init__(
            f"No live provider resolved {', '.join(symbols)}", code="PROVIDERS_EXHAUSTED"
        )
