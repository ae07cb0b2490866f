from __future__ import annotations

import enum


class Market(str, enum.Enum):
    US = "US"
    NYSE = "NYSE"
    NASDAQ = "NASDAQ"
    NYSE_ARCA = "NYSE_ARCA"
    SET = "SET"
    MAI = "MAI"
    HKSE = "HKSE"
    TSE = "TSE"
    LSE = "LSE"
    SGX = "SGX"
    ASX = "ASX"
    OTC = "OTC"
    OTHER = "OTHER"


# Exchange suffix used by the chart provider; US markets take none.
_PROVIDER_SUFFIX = {
    Market.SET: ".BK",
    Market.MAI: ".BK",
    Market.HKSE: ".HK",
    Market.TSE: ".T",
    Market.LSE: ".L",
    Market.ASX: ".AX",
    Market.SGX: ".SI",
}

_CURRENCY = {
    Market.SET: "THB",
    Market.MAI: "THB",
    Market.HKSE: "HKD",
    Market.TSE: "JPY",
    Market.LSE: "GBP",
    Market.SGX: "SGD",
    Market.ASX: "AUD",
}


def format_symbol(symbol: str, market: Market) -> str:
    cleaned = symbol.strip().upper()
    suffix = _PROVIDER_SUFFIX.get(market)
    if suffix and cleaned.endswith(suffix):
        return cleaned[: -len(suffix)]
    return cleaned


def provider_symbol(symbol: str, market: Market) -> str:
    return f"{format_symbol(symbol, market)}{_PROVIDER_SUFFIX.get(market, '')}"


def market_currency(market: Market) -> str:
    return _CURRENCY.get(market, "USD")


def strip_provider_suffix(symbol: str) -> str:
    """``CPALL.BK`` -> ``CPALL``; symbols without a known exchange suffix are unchanged."""
    cleaned = symbol.strip().upper()
    for suffix in set(_PROVIDER_SUFFIX.values()):
        if cleaned.endswith(suffix) and len(cleaned) > len(suffix):
            return cleaned[: -len(suffix)]
    return cleaned
