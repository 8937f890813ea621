"""
Branch engine: one market snapshot, N scored branches, sorted by EV.

The market data source is called at most once per run_simulation(). Fetch
failures fall back to MarketDefaults and are logged, never raised.
"""

from __future__ import annotations

import inspect
import logging
import math
import time
from typing import Sequence

from config.params import (
    MARKET_DEFAULTS,
    VOLATILITY,
    MarketDefaults,
    SimulationConfig,
    VolatilityParams,
)
from data.fetcher import MarketDataSource, snapshot_from_dict
from models.events import SIMULATION_COMPLETED, SIMULATION_STARTED, EventHooks
from models.ev_scorer import EVScorer
from models.path_generator import PathGenerator
from models.price_simulation import PriceHistory, VolatilityEstimator
from models.types import Branch, MarketDataOverride, MarketSnapshot

LOGGER = logging.getLogger(__name__)

MAX_YIELD_PCT = 50.0


def _positive(value, fallback: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return float(fallback)
    if not math.isfinite(value) or value <= 0:
        return float(fallback)
    return value


class BranchEngine:
    """Runs branch simulations against a single resolved market snapshot."""

    def __init__(self, data_source: MarketDataSource | None = None,
                 generator: PathGenerator | None = None,
                 scorer: EVScorer | None = None,
                 hooks: EventHooks | None = None,
                 defaults: MarketDefaults = MARKET_DEFAULTS,
                 vol_params: VolatilityParams = VOLATILITY):
        self.data_source = data_source
        self.scorer = scorer or EVScorer()
        self.generator = generator or PathGenerator(scorer=self.scorer)
        self.hooks = hooks or EventHooks()
        self.defaults = defaults
        self.history = PriceHistory(vol_params.history_capacity)
        self.volatility = VolatilityEstimator(vol_params)
        self._last_snapshot: MarketSnapshot | None = None

    @property
    def last_market_snapshot(self) -> MarketSnapshot | None:
        return self._last_snapshot

    def _fallback_snapshot(self, override: MarketDataOverride | None) -> MarketSnapshot:
        override = override or MarketDataOverride()
        d = self.defaults
        return MarketSnapshot(
            price=_positive(override.current_price, d.price),
            tvl=_positive(override.current_tvl, d.tvl),
            yield_pct=min(MAX_YIELD_PCT, _positive(override.current_yield, d.yield_pct)),
            gas_price=d.gas_price,
            volatility=self.volatility.clamp(d.volatility),
            timestamp=time.time(),
        )

    async def _fetch(self):
        result = self.data_source.fetch_snapshot()
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, dict):
            result = snapshot_from_dict(result, self.defaults)
        if not isinstance(result, MarketSnapshot):
            raise TypeError(f"Data source returned {type(result).__name__}, expected MarketSnapshot")
        return result

    async def resolve_snapshot(self, override: MarketDataOverride | None = None) -> MarketSnapshot:
        """
        Fetch one snapshot, apply overrides, and refresh volatility from history.

        The fetched price is recorded in the rolling history; the snapshot's
        volatility is the history estimate, or the source's own value while
        the history is too short.
        """
        if self.data_source is None:
            snapshot = self._fallback_snapshot(override)
            self._last_snapshot = snapshot
            return snapshot

        try:
            fetched = await self._fetch()
        except Exception as exc:
            LOGGER.warning("Failed to fetch market data, using fallback: %s", exc)
            snapshot = self._fallback_snapshot(override)
            self._last_snapshot = snapshot
            return snapshot

        override = override or MarketDataOverride()
        d = self.defaults
        price = _positive(override.current_price, _positive(fetched.price, d.price))
        tvl = _positive(override.current_tvl, _positive(fetched.tvl, d.tvl))
        yield_pct = _positive(override.current_yield, _positive(fetched.yield_pct, d.yield_pct))
        timestamp = fetched.timestamp if math.isfinite(fetched.timestamp) else time.time()

        self.history.record(price, timestamp)
        volatility = self.volatility.estimate(
            self.history.samples(),
            default=fetched.volatility if math.isfinite(fetched.volatility) else d.volatility,
        )

        snapshot = MarketSnapshot(
            price=price,
            tvl=tvl,
            yield_pct=min(MAX_YIELD_PCT, yield_pct),
            gas_price=fetched.gas_price if math.isfinite(fetched.gas_price) else d.gas_price,
            volatility=volatility,
            timestamp=timestamp,
        )
        self._last_snapshot = snapshot
        return snapshot

    async def run_simulation(self, config: SimulationConfig,
                             market_data_override: MarketDataOverride | dict | None = None) -> list[Branch]:
        config.validate()
        if isinstance(market_data_override, dict):
            market_data_override = MarketDataOverride.from_dict(market_data_override)

        simulation_id = f"sim-{int(time.time() * 1000)}"
        self.hooks.emit(SIMULATION_STARTED, {"simulation_id": simulation_id, "config": config})

        if config.time_horizon == 0:
            self.hooks.emit(SIMULATION_COMPLETED, {"simulation_id": simulation_id, "branches": []})
            return []

        snapshot = await self.resolve_snapshot(market_data_override)

        branches = []
        for i in range(config.branch_count):
            branch = await self.generator.create_branch(
                i, config.branch_count, config, snapshot,
                branch_id=f"{simulation_id}-branch-{i}",
            )
            branches.append(branch)

        for branch in branches:
            branch.ev_score = self.scorer.branch_score(branch.predictions)

        # Stable: equal scores keep generation order
        branches.sort(key=lambda b: b.ev_score, reverse=True)

        LOGGER.info("Simulation %s produced %d branches (best EV %d)",
                    simulation_id, len(branches), branches[0].ev_score)
        self.hooks.emit(SIMULATION_COMPLETED, {"simulation_id": simulation_id, "branches": branches})
        return branches

    @staticmethod
    def select_best_branch(branches: Sequence[Branch] | None) -> Branch | None:
        """Highest ev_score; the first encountered wins ties. None when empty."""
        if not branches:
            return None
        best = branches[0]
        for branch in branches[1:]:
            if branch.ev_score > best.ev_score:
                best = branch
        return best
