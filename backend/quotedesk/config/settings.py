from __future__ import annotations

from typing import Dict

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BreakerSettings(BaseModel):
    failure_threshold: int = 5
    cooldown_seconds: float = 300.0


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTEDESK_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )
    aggregator_base_url: str = "http://localhost:4170"
    aggregator_timeout_seconds: float = 5.0
    yahoo_base_url: str = "https://query1.finance.yahoo.com"
    yahoo_timeout_seconds: float = 5.0
    yahoo_request_delay_seconds: float = 0.1
    yahoo_max_concurrency: int = 4
    user_agent: str = "quotedesk/0.1"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTEDESK_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("REDIS_URL", "QUOTEDESK_REDIS_URL"),
    )
    refresh_queue_name: str = Field(
        default="quotes",
        validation_alias=AliasChoices("REFRESH_QUEUE_NAME", "QUOTEDESK_REFRESH_QUEUE_NAME"),
    )
    refresh_job_timeout_seconds: int = 120
    refresh_max_retries: int = 2
    refresh_retry_interval_seconds: int = 15
    log_level: str = "INFO"

    cache_key_prefix: str = "quotedesk:"
    quote_cache_ttl_seconds: int = 30
    batch_cache_ttl_seconds: int = 30

    default_fallback_price: float = 100.0
    fallback_prices: Dict[str, float] = Field(default_factory=dict)
    portfolio_value_precision: int = 2

    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)


settings = Settings()
