"""Typed dataclasses for market snapshots, branches, and Monte Carlo reports."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time market state consumed by the forecasting engine."""

    price: float
    tvl: float
    yield_pct: float
    gas_price: float
    volatility: float
    timestamp: float
    # Unix seconds


@dataclass(frozen=True)
class MarketDataOverride:
    """Caller-supplied values that take precedence over fetched market data."""

    current_price: float | None = None
    current_tvl: float | None = None
    current_yield: float | None = None

    @classmethod
    def from_dict(cls, raw: dict | None) -> MarketDataOverride | None:
        if not raw:
            return None
        return cls(
            current_price=raw.get("current_price", raw.get("currentPrice")),
            current_tvl=raw.get("current_tvl", raw.get("currentTVL")),
            current_yield=raw.get("current_yield", raw.get("currentYield")),
        )


@dataclass(frozen=True)
class PriceHistorySample:
    timestamp: float
    price: float


@dataclass
class PredictionStep:
    """One forecast step; `ev` is filled after the whole path is generated."""

    timestamp: float
    price: float
    volatility: float
    tvl: float
    yield_pct: float
    peg_deviation_a: float
    peg_deviation_b: float
    ev: int = 0


@dataclass
class Branch:
    """One simulated future trajectory."""

    id: str
    predictions: list[PredictionStep] = field(default_factory=list)
    outcome: Outcome = Outcome.PENDING
    ev_score: int = 0
    parent_id: str | None = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["outcome"] = self.outcome.value
        return out


@dataclass(frozen=True)
class Percentiles:
    p5: int = 0
    p10: int = 0
    p25: int = 0
    p50: int = 0
    p75: int = 0
    p90: int = 0
    p95: int = 0


@dataclass(frozen=True)
class MonteCarloReport:
    """Aggregate EV distribution statistics from one Monte Carlo run."""

    mean_ev: int
    median_ev: int
    std_ev: float
    success_probability: float
    failure_probability: float
    confidence_interval_95: tuple[int, int]
    confidence_interval_99: tuple[int, int]
    var_95: int
    var_99: int
    cvar_95: int
    percentiles: Percentiles
    converged: bool
    iterations_run: int
    convergence_metric: float
    # Standard error of the mean EV
    sample_size: int
    skewness: float
    kurtosis: float
    # Excess kurtosis (normal = 0)

    @classmethod
    def empty(cls, iterations_run: int = 0) -> MonteCarloReport:
        return cls(
            mean_ev=0,
            median_ev=0,
            std_ev=0.0,
            success_probability=0.0,
            failure_probability=0.0,
            confidence_interval_95=(0, 0),
            confidence_interval_99=(0, 0),
            var_95=0,
            var_99=0,
            cvar_95=0,
            percentiles=Percentiles(),
            converged=False,
            iterations_run=iterations_run,
            convergence_metric=math.inf,
            sample_size=0,
            skewness=0.0,
            kurtosis=0.0,
        )

    def to_dict(self) -> dict:
        out = asdict(self)
        out["confidence_interval_95"] = list(self.confidence_interval_95)
        out["confidence_interval_99"] = list(self.confidence_interval_99)
        if not math.isfinite(self.convergence_metric):
            out["convergence_metric"] = None
        return out
