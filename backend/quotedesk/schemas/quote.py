from __future__ import annotations

import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

QuoteSource = Literal["primary", "secondary", "fallback"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    name: str
    price: float = Field(ge=0)
    change: float = 0.0
    change_percent: float = 0.0
    previous_close: float
    volume: int = 0
    market_cap: Optional[float] = None
    high: float
    low: float
    open: float
    timestamp: datetime.datetime = Field(default_factory=_utcnow)
    market: Optional[str] = None
    currency: Optional[str] = None
    source: QuoteSource = "primary"

    @field_validator("symbol")
    @classmethod
    def _canonical_symbol(cls, value: str) -> str:
        return value.strip().upper()


class Holding(BaseModel):
    symbol: str
    quantity: float = Field(ge=0)


class DistributedCacheStats(BaseModel):
    connected: bool
    key_count: int = 0


class CacheStats(BaseModel):
    local_size: int
    distributed: DistributedCacheStats


class ProviderAvailability(BaseModel):
    available: bool
    failures: int


class ApiStatus(BaseModel):
    primary: ProviderAvailability
    secondary: ProviderAvailability
