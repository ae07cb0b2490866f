import asyncio
import json

from fakes import FakeRedis

from quotedesk.cache import LocalCache, QuoteCache, batch_key, market_key
from quotedesk.config.settings import Settings
from quotedesk.schemas.quote import Quote


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_quote(symbol: str = "AAPL", price: float = 150.0) -> Quote:
    return Quote(
        symbol=symbol,
        name=f"{symbol} Corp",
        price=price,
        previous_close=price,
        high=price,
        low=price,
        open=price,
    )


def build_cache(fake: FakeRedis, clock: FakeClock) -> QuoteCache:
    return QuoteCache(Settings(), client=fake, clock=clock)


def test_cache_keys() -> None:
    assert market_key(" aapl ") == "market:AAPL"
    assert batch_key(["MSFT", "AAPL"]) == "market:batch:AAPL,MSFT"


def test_local_cache_expires_after_ttl() -> None:
    clock = FakeClock()
    local = LocalCache(clock)
    local.set("market:AAPL", "quote", ttl=30)

    clock.now += 30
    assert local.get("market:AAPL") == "quote"

    clock.now += 0.5
    assert local.get("market:AAPL") is None
    assert len(local) == 0


def test_local_cache_delete_matching() -> None:
    local = LocalCache(FakeClock())
    local.set("market:AAPL", 1, ttl=30)
    local.set("market:batch:AAPL,MSFT", 2, ttl=30)
    local.set("market:batch:TSLA", 3, ttl=30)

    assert local.delete_matching("market:batch:*") == 2
    assert len(local) == 1


def test_cache_roundtrip_writes_envelope() -> None:
    fake = FakeRedis()
    clock = FakeClock()
    cache = build_cache(fake, clock)
    quote = build_quote()

    asyncio.run(cache.set(market_key("AAPL"), quote, ttl=30))
    cached = asyncio.run(cache.get(market_key("AAPL")))

    assert cached == quote
    envelope = json.loads(fake.store["quotedesk:market:AAPL"])
    assert envelope["ttl"] == 30
    assert envelope["timestamp"] == clock.now
    assert envelope["data"]["symbol"] == "AAPL"
    assert fake.expirations["quotedesk:market:AAPL"] == 30


def test_cache_batch_value_roundtrip() -> None:
    fake = FakeRedis()
    cache = build_cache(fake, FakeClock())
    quotes = [build_quote("AAPL"), build_quote("MSFT", 300.0)]

    async def scenario():
        await cache.set(batch_key(["AAPL", "MSFT"]), quotes, ttl=30)
        cache._local.clear()
        return await cache.get(batch_key(["AAPL", "MSFT"]))

    assert asyncio.run(scenario()) == quotes


def test_distributed_hit_populates_local_tier() -> None:
    fake = FakeRedis()
    clock = FakeClock()
    writer = build_cache(fake, clock)
    reader = build_cache(fake, clock)
    quote = build_quote()

    asyncio.run(writer.set(market_key("AAPL"), quote, ttl=30))
    assert reader.local_size == 0

    assert asyncio.run(reader.get(market_key("AAPL"))) == quote
    assert reader.local_size == 1

    fake.fail = True
    assert asyncio.run(reader.get(market_key("AAPL"))) == quote


def test_expired_distributed_entry_is_removed() -> None:
    fake = FakeRedis()
    clock = FakeClock()
    cache = build_cache(fake, clock)

    asyncio.run(cache.set(market_key("AAPL"), build_quote(), ttl=30))
    clock.now += 31

    assert asyncio.run(cache.get(market_key("AAPL"))) is None
    assert "quotedesk:market:AAPL" not in fake.store


def test_redis_failure_falls_back_to_local_tier() -> None:
    fake = FakeRedis()
    fake.fail = True
    clock = FakeClock()
    cache = build_cache(fake, clock)
    quote = build_quote()

    asyncio.run(cache.set(market_key("AAPL"), quote, ttl=30))

    assert cache.connected is False
    assert fake.store == {}
    assert asyncio.run(cache.get(market_key("AAPL"))) == quote
    assert asyncio.run(cache.key_count()) == 0


def test_redis_is_retried_after_reconnect_interval() -> None:
    fake = FakeRedis()
    fake.fail = True
    clock = FakeClock()
    cache = build_cache(fake, clock)

    asyncio.run(cache.set(market_key("AAPL"), build_quote(), ttl=30))
    fake.fail = False

    asyncio.run(cache.set(market_key("MSFT"), build_quote("MSFT"), ttl=30))
    assert "quotedesk:market:MSFT" not in fake.store

    clock.now += 6
    asyncio.run(cache.set(market_key("TSLA"), build_quote("TSLA"), ttl=30))
    assert "quotedesk:market:TSLA" in fake.store
    assert cache.connected is True


def test_mget_merges_both_tiers() -> None:
    fake = FakeRedis()
    clock = FakeClock()
    cache = build_cache(fake, clock)
    aapl = build_quote("AAPL")
    msft = build_quote("MSFT", 300.0)

    async def scenario():
        await cache.mset({market_key("AAPL"): aapl}, ttl=30)
        cache._local.set(market_key("MSFT"), msft, 30)
        return await cache.mget([market_key("AAPL"), market_key("MSFT"), market_key("TSLA")])

    found = asyncio.run(scenario())

    assert found == {market_key("AAPL"): aapl, market_key("MSFT"): msft}
    assert fake.expirations["quotedesk:market:AAPL"] == 30


def test_delete_pattern_and_flush() -> None:
    fake = FakeRedis()
    cache = build_cache(fake, FakeClock())

    async def scenario():
        await cache.set(market_key("AAPL"), build_quote(), ttl=30)
        await cache.set(batch_key(["AAPL", "MSFT"]), [build_quote()], ttl=30)
        removed = await cache.delete_pattern("market:batch:*")
        remaining = await cache.key_count()
        await cache.flush()
        return removed, remaining, await cache.key_count()

    removed, remaining, after_flush = asyncio.run(scenario())

    assert removed == 1
    assert remaining == 1
    assert after_flush == 0
    assert cache.local_size == 0


def test_unreadable_entry_is_discarded() -> None:
    fake = FakeRedis()
    fake.store["quotedesk:market:AAPL"] = "not json"
    cache = build_cache(fake, FakeClock())

    assert asyncio.run(cache.get(market_key("AAPL"))) is None
    assert "quotedesk:market:AAPL" not in fake.store
