"""
Market data collaborators for the forecasting engine.

The engine only needs an object exposing `fetch_snapshot()` that returns a
MarketSnapshot (directly or as an awaitable). This module provides:

- StaticMarketDataSource: fixed values, for tests and offline runs
- JSONFileMarketDataSource: snapshot from a cached JSON file
- CachedMarketDataSource: short-lived TTL cache around any other source

Cache lifetime is owned here, never by the engine.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import threading
import time
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from config.params import MARKET_DEFAULTS, MarketDefaults
from models.types import MarketSnapshot

CACHE_DIR = Path(__file__).parent / "cache"
CACHE_FILE = CACHE_DIR / "market_snapshot.json"

# Snapshot reuse window for concurrent simulation requests
DEFAULT_CACHE_TTL_SECONDS = 30.0


class DataUnavailable(RuntimeError):
    """Raised by a data source that cannot produce a snapshot."""


@runtime_checkable
class MarketDataSource(Protocol):
    def fetch_snapshot(self) -> Any:
        """Return a MarketSnapshot or an awaitable resolving to one."""


def _first_float(raw: dict, *keys: str, default: float) -> float:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return float(default)


def snapshot_from_dict(raw: dict, defaults: MarketDefaults = MARKET_DEFAULTS) -> MarketSnapshot:
    """
    Build a MarketSnapshot from a loosely keyed mapping.

    Accepts snake_case and the camelCase keys used by the web frontend;
    missing or unparsable fields fall back to the defaults.
    """
    if not isinstance(raw, dict):
        raise DataUnavailable(f"Expected a mapping, got {type(raw).__name__}")
    return MarketSnapshot(
        price=_first_float(raw, "price", "eth_price_usd", "ethPriceUsd", default=defaults.price),
        tvl=_first_float(raw, "tvl", "tvl_usd", "tvlUsd", default=defaults.tvl),
        yield_pct=_first_float(raw, "yield_pct", "yield", "current_apy", "currentAPY",
                               default=defaults.yield_pct),
        gas_price=_first_float(raw, "gas_price", "gasPrice", "gas_price_gwei", "gasPriceGwei",
                               default=defaults.gas_price),
        volatility=_first_float(raw, "volatility", default=defaults.volatility),
        timestamp=_first_float(raw, "timestamp", default=time.time()),
    )


class StaticMarketDataSource:
    """Always returns the same market values with a fresh timestamp."""

    def __init__(self, price: float = MARKET_DEFAULTS.price,
                 tvl: float = MARKET_DEFAULTS.tvl,
                 yield_pct: float = MARKET_DEFAULTS.yield_pct,
                 gas_price: float = MARKET_DEFAULTS.gas_price,
                 volatility: float = MARKET_DEFAULTS.volatility):
        self.price = price
        self.tvl = tvl
        self.yield_pct = yield_pct
        self.gas_price = gas_price
        self.volatility = volatility
        self.calls = 0

    def fetch_snapshot(self) -> MarketSnapshot:
        self.calls += 1
        return MarketSnapshot(
            price=self.price,
            tvl=self.tvl,
            yield_pct=self.yield_pct,
            gas_price=self.gas_price,
            volatility=self.volatility,
            timestamp=time.time(),
        )


class JSONFileMarketDataSource:
    """Reads a snapshot from a JSON file written by an external fetcher."""

    def __init__(self, path: Path | str = CACHE_FILE,
                 defaults: MarketDefaults = MARKET_DEFAULTS):
        self.path = Path(path)
        self.defaults = defaults

    def fetch_snapshot(self) -> MarketSnapshot:
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise DataUnavailable(f"Could not read market snapshot from {self.path}: {exc}") from exc
        return snapshot_from_dict(raw, self.defaults)


class CachedMarketDataSource:
    """
    TTL cache around another data source.

    Supports both plain and coroutine `fetch_snapshot()` implementations of
    the wrapped source; failures are never cached. Concurrent misses wait on
    one refresh instead of each calling the wrapped source.
    """

    def __init__(self, source: MarketDataSource,
                 ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
                 clock=time.monotonic):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: MarketSnapshot | None = None
        self._cached_at: float | None = None
        self._refresh: asyncio.Lock | None = None
        self._refresh_loop = None

    def _fresh(self) -> MarketSnapshot | None:
        with self._lock:
            if self._cached is None or self._cached_at is None:
                return None
            if self._clock() - self._cached_at >= self.ttl_seconds:
                return None
            return self._cached

    def _store(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        with self._lock:
            self._cached = snapshot
            self._cached_at = self._clock()
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None

    def _refresh_lock(self) -> asyncio.Lock:
        # asyncio locks belong to one event loop
        loop = asyncio.get_running_loop()
        if self._refresh is None or self._refresh_loop is not loop:
            self._refresh = asyncio.Lock()
            self._refresh_loop = loop
        return self._refresh

    async def fetch_snapshot(self) -> MarketSnapshot:
        cached = self._fresh()
        if cached is not None:
            return cached
        async with self._refresh_lock():
            # Another coroutine may have refreshed while this one waited
            cached = self._fresh()
            if cached is not None:
                return cached
            result = self.source.fetch_snapshot()
            if inspect.isawaitable(result):
                result = await result
            return self._store(result)
