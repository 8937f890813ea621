"""
Simulation parameters for the branch forecasting engine.

All tunables live here as frozen dataclasses with module-level default
instances. Values can be overridden from the environment via
params_from_env() (FORECAST_* variables, optionally loaded from .env).
"""

import math
import numbers
import os
from dataclasses import dataclass, fields, replace


class InvalidConfig(ValueError):
    """Raised when a SimulationConfig cannot be simulated."""


def _is_integer(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _is_finite(value) -> bool:
    return (isinstance(value, numbers.Real) and not isinstance(value, bool)
            and math.isfinite(value))


@dataclass(frozen=True)
class SimulationConfig:
    """A single simulation request."""
    time_horizon: float = 60.0
    # Minutes into the future
    branch_count: int = 5
    # Number of alternative futures to explore
    prediction_interval: float = 10.0
    # Minutes between prediction steps

    def validate(self) -> None:
        if not _is_integer(self.branch_count):
            raise InvalidConfig(f"branch_count must be an integer, got {self.branch_count!r}")
        if self.branch_count < 1:
            raise InvalidConfig("branch_count must be at least 1")
        if not _is_finite(self.prediction_interval) or not self.prediction_interval > 0:
            raise InvalidConfig("prediction_interval must be a finite positive number")
        if not _is_finite(self.time_horizon) or self.time_horizon < 0:
            raise InvalidConfig("time_horizon must be a finite non-negative number")

    @property
    def n_intervals(self) -> int:
        return int(math.ceil(self.time_horizon / self.prediction_interval))


@dataclass(frozen=True)
class MarketDefaults:
    """Fallback market state used when the data source is unavailable."""
    price: float = 2000.0
    tvl: float = 1_000_000.0
    yield_pct: float = 3.5
    gas_price: float = 20.0
    # Gwei
    volatility: float = 0.25


@dataclass(frozen=True)
class VolatilityParams:
    """Volatility estimation bounds and history window."""
    default_vol: float = 0.25
    # Returned when the history is too short to estimate
    min_vol: float = 0.05
    max_vol: float = 1.0
    min_samples: int = 3
    history_capacity: int = 40
    # Ring buffer size for price samples


@dataclass(frozen=True)
class PathParams:
    """Per-branch stochastic model parameters."""
    base_drift: float = 0.05
    drift_spread: float = 0.2
    # drift = base + (i/N - 0.5) * spread
    base_vol_factor: float = 0.8
    vol_factor_spread: float = 0.4
    # vol_factor = base + (i/N) * spread
    tvl_price_elasticity: float = 0.5
    tvl_noise_low: float = 0.95
    tvl_noise_high: float = 1.05
    yield_tvl_sensitivity: float = 0.3
    # TVL growth dilutes yield
    yield_vol_premium: float = 2.0
    yield_vol_weight: float = 0.1
    min_yield: float = 0.1
    max_yield: float = 50.0
    peg_a_initial: float = 0.001
    peg_a_reversion: float = 0.3
    peg_b_initial: float = 0.002
    peg_b_reversion: float = 0.2
    peg_noise_amplitude: float = 0.005
    # Uniform noise in [-amp/2, amp/2]
    max_peg_deviation: float = 0.1


@dataclass(frozen=True)
class ScoringParams:
    """Expected-value scoring weights."""
    volatility_penalty: float = 8.0
    peg_penalty: float = 200.0
    ev_bound: float = 1000.0
    decay_lambda: float = 0.1
    # Exponential time-decay for branch-level EV


@dataclass(frozen=True)
class OutcomePolicy:
    """
    Outcome classification thresholds.

    Earlier engine revisions used 0/-5, 8/-8 and 10/-10 for the EV cutoffs;
    0/-5 is the default here.
    """
    success_min_final_ev: float = 0.0
    success_min_avg_yield: float = 3.0
    success_max_avg_vol: float = 0.35
    failure_max_final_ev: float = -5.0
    failure_min_avg_vol: float = 0.5


@dataclass(frozen=True)
class MonteCarloParams:
    """Monte Carlo iteration budget and convergence controls."""
    max_iterations: int = 1000
    min_iterations: int = 100
    convergence_threshold: float = 0.5
    # Standard error of the mean EV
    check_interval: int = 50
    progress_interval: int = 100
    mean_stability_pct: float = 1.0
    batch_iterations: int = 500


def _coerce(raw: str, current):
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_env(instance, prefix: str):
    """Override dataclass fields from FORECAST_<PREFIX>_<FIELD> variables."""
    overrides = {}
    for f in fields(instance):
        raw = os.getenv(f"FORECAST_{prefix}_{f.name.upper()}")
        if raw is None or raw == "":
            continue
        try:
            overrides[f.name] = _coerce(raw, getattr(instance, f.name))
        except ValueError:
            print(f"  [WARN] Ignoring invalid FORECAST_{prefix}_{f.name.upper()}={raw!r}")
    return replace(instance, **overrides) if overrides else instance


def params_from_env() -> dict:
    """
    Build parameter instances, applying FORECAST_* environment overrides.

    Example: FORECAST_MC_MAX_ITERATIONS=5000, FORECAST_OUTCOME_FAILURE_MAX_FINAL_EV=-8.
    """
    return {
        "market_defaults": _apply_env(MARKET_DEFAULTS, "MARKET"),
        "volatility": _apply_env(VOLATILITY, "VOL"),
        "path": _apply_env(PATH, "PATH"),
        "scoring": _apply_env(SCORING, "SCORING"),
        "outcome": _apply_env(OUTCOME_POLICY, "OUTCOME"),
        "monte_carlo": _apply_env(MONTE_CARLO, "MC"),
    }


# Convenient default instances (used throughout codebase)
MARKET_DEFAULTS = MarketDefaults()
VOLATILITY = VolatilityParams()
PATH = PathParams()
SCORING = ScoringParams()
OUTCOME_POLICY = OutcomePolicy()
MONTE_CARLO = MonteCarloParams()
