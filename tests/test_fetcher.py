"""Tests for market data sources and snapshot parsing."""

import asyncio
import json

import pytest

from config.params import MarketDefaults
from data.fetcher import (
    CachedMarketDataSource,
    DataUnavailable,
    JSONFileMarketDataSource,
    MarketDataSource,
    StaticMarketDataSource,
    snapshot_from_dict,
)
from models.types import MarketSnapshot


def _run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class AsyncCountingSource:
    def __init__(self):
        self.calls = 0

    async def fetch_snapshot(self):
        self.calls += 1
        return MarketSnapshot(price=2000.0 + self.calls, tvl=1e6, yield_pct=3.5,
                              gas_price=20.0, volatility=0.25, timestamp=float(self.calls))


class TestSnapshotFromDict:
    def test_snake_case(self):
        snap = snapshot_from_dict({"price": 1900, "tvl": 2e6, "yield_pct": 4.2,
                                   "gas_price": 15, "volatility": 0.3, "timestamp": 123})
        assert snap == MarketSnapshot(1900.0, 2e6, 4.2, 15.0, 0.3, 123.0)

    def test_camel_case(self):
        snap = snapshot_from_dict({"ethPriceUsd": "2100.5", "tvlUsd": 5e6,
                                   "currentAPY": 6.1, "gasPriceGwei": 30})
        assert snap.price == 2100.5
        assert snap.tvl == 5e6
        assert snap.yield_pct == 6.1
        assert snap.gas_price == 30.0

    def test_missing_fields_use_defaults(self):
        defaults = MarketDefaults(price=1234.0, volatility=0.4)
        snap = snapshot_from_dict({"price": "not-a-number"}, defaults)
        assert snap.price == 1234.0
        assert snap.volatility == 0.4
        assert snap.tvl == defaults.tvl

    def test_rejects_non_mapping(self):
        with pytest.raises(DataUnavailable):
            snapshot_from_dict([1, 2, 3])


class TestStaticSource:
    def test_counts_calls(self):
        source = StaticMarketDataSource(price=1500.0)
        assert isinstance(source, MarketDataSource)
        assert source.fetch_snapshot().price == 1500.0
        source.fetch_snapshot()
        assert source.calls == 2


class TestJSONFileSource:
    def test_reads_snapshot(self, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text(json.dumps({"price": 2500, "currentAPY": 5.0}))
        snap = JSONFileMarketDataSource(path).fetch_snapshot()
        assert snap.price == 2500.0
        assert snap.yield_pct == 5.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataUnavailable):
            JSONFileMarketDataSource(tmp_path / "absent.json").fetch_snapshot()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(DataUnavailable):
            JSONFileMarketDataSource(path).fetch_snapshot()


class TestCachedSource:
    def test_reuses_within_ttl(self):
        clock = FakeClock()
        inner = StaticMarketDataSource()
        cached = CachedMarketDataSource(inner, ttl_seconds=30, clock=clock)

        first = _run(cached.fetch_snapshot())
        clock.now = 29.9
        second = _run(cached.fetch_snapshot())
        assert second is first
        assert inner.calls == 1

        clock.now = 30.0
        third = _run(cached.fetch_snapshot())
        assert third is not first
        assert inner.calls == 2

    def test_wraps_async_source(self):
        inner = AsyncCountingSource()
        cached = CachedMarketDataSource(inner, clock=FakeClock())
        assert _run(cached.fetch_snapshot()).price == 2001.0
        assert _run(cached.fetch_snapshot()).price == 2001.0
        assert inner.calls == 1

    def test_invalidate(self):
        inner = StaticMarketDataSource()
        cached = CachedMarketDataSource(inner, clock=FakeClock())
        _run(cached.fetch_snapshot())
        cached.invalidate()
        _run(cached.fetch_snapshot())
        assert inner.calls == 2

    def test_failures_not_cached(self, tmp_path):
        path = tmp_path / "snap.json"
        cached = CachedMarketDataSource(JSONFileMarketDataSource(path), clock=FakeClock())
        with pytest.raises(DataUnavailable):
            _run(cached.fetch_snapshot())
        path.write_text(json.dumps({"price": 1800}))
        assert _run(cached.fetch_snapshot()).price == 1800.0

    def test_concurrent_misses_share_one_fetch(self):
        class SlowSource:
            def __init__(self):
                self.calls = 0

            async def fetch_snapshot(self):
                self.calls += 1
                await asyncio.sleep(0.01)
                return MarketSnapshot(price=2000.0, tvl=1e6, yield_pct=3.5,
                                      gas_price=20.0, volatility=0.25, timestamp=0.0)

        inner = SlowSource()
        cached = CachedMarketDataSource(inner, clock=FakeClock())

        async def burst():
            return await asyncio.gather(*(cached.fetch_snapshot() for _ in range(8)))

        snapshots = _run(burst())
        assert inner.calls == 1
        assert all(s is snapshots[0] for s in snapshots)

    def test_reused_across_event_loops(self):
        inner = StaticMarketDataSource()
        clock = FakeClock()
        cached = CachedMarketDataSource(inner, ttl_seconds=30, clock=clock)
        _run(cached.fetch_snapshot())
        clock.now = 60.0
        _run(cached.fetch_snapshot())
        assert inner.calls == 2
