"""
Price simulation: time-aware volatility estimation and GBM path stepping.

Volatility is estimated from irregularly spaced price samples, so each log
return is annualized with its own elapsed time rather than a fixed cadence.
"""

import logging
import math
import time
from collections import deque
from typing import Iterable

import numpy as np

from config.params import VOLATILITY, VolatilityParams
from models.types import PriceHistorySample

LOGGER = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365.25 * 24 * 60 * 60
EPSILON = np.finfo(float).eps


class PriceHistory:
    """Fixed-capacity ring buffer of price samples."""

    def __init__(self, capacity: int = VOLATILITY.history_capacity):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._samples: deque[PriceHistorySample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    def record(self, price: float, timestamp: float | None = None) -> PriceHistorySample:
        sample = PriceHistorySample(
            timestamp=time.time() if timestamp is None else float(timestamp),
            price=float(price),
        )
        self._samples.append(sample)
        return sample

    def samples(self) -> list[PriceHistorySample]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


class VolatilityEstimator:
    """
    Annualized volatility from timestamped price samples.

    For each consecutive pair the log return r = ln(p_i / p_{i-1}) is scaled
    by its own elapsed time, r / sqrt(dt_years). The volatility is the sample
    standard deviation (n - 1) of those annualized returns, clamped to
    [min_vol, max_vol]. Short or degenerate histories return the default.
    """

    def __init__(self, params: VolatilityParams = VOLATILITY):
        self.default_vol = params.default_vol
        self.min_vol = params.min_vol
        self.max_vol = params.max_vol
        self.min_samples = params.min_samples

    def clamp(self, vol: float) -> float:
        if vol is None or not math.isfinite(vol):
            return self.default_vol
        return float(min(self.max_vol, max(self.min_vol, vol)))

    def annualized_returns(self, history: Iterable[PriceHistorySample]) -> np.ndarray:
        samples = list(history)
        out = []
        for prev, cur in zip(samples, samples[1:]):
            dt_years = (cur.timestamp - prev.timestamp) / SECONDS_PER_YEAR
            if dt_years <= 0 or prev.price <= 0 or cur.price <= 0:
                continue
            out.append(math.log(cur.price / prev.price) / math.sqrt(dt_years))
        return np.asarray(out, dtype=float)

    def estimate(self, history: Iterable[PriceHistorySample],
                 default: float | None = None) -> float:
        fallback = self.clamp(self.default_vol if default is None else default)
        samples = list(history)
        if len(samples) < self.min_samples:
            return fallback

        returns = self.annualized_returns(samples)
        if returns.size < 2:
            return fallback

        vol = float(np.std(returns, ddof=1))
        if not math.isfinite(vol):
            LOGGER.warning("Non-finite volatility estimate from %d returns, using fallback", returns.size)
            return fallback
        return self.clamp(vol)


def box_muller(rng) -> float:
    """
    Standard normal variate via the Box-Muller transform.

    u1 = 1 - U lies in (0, 1], so ln(u1) is finite; it is additionally
    floored at machine epsilon. Non-finite output is replaced with 0.
    """
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    z = math.sqrt(-2.0 * math.log(max(u1, EPSILON))) * math.cos(2.0 * math.pi * u2)
    if not math.isfinite(z):
        LOGGER.warning("Box-Muller produced non-finite value, returning 0")
        return 0.0
    return z


class GBMSimulator:
    """
    Single-path Geometric Brownian Motion stepper.

    S(t+dt) = S(t) * exp((mu - sigma^2/2)*dt + sigma*sqrt(dt)*Z)

    `time_step_days` is converted to a year fraction with a 365-day year.
    """

    def __init__(self, mu: float = 0.0, rng: np.random.Generator | None = None):
        self.mu = mu
        self.rng = rng if rng is not None else np.random.default_rng()

    def step(self, price: float, sigma: float, time_step_days: float,
             mu: float | None = None) -> float:
        mu = self.mu if mu is None else mu
        dt = time_step_days / 365.0
        z = box_muller(self.rng)
        log_return = (mu - 0.5 * sigma ** 2) * dt + sigma * math.sqrt(dt) * z
        try:
            return price * math.exp(log_return)
        except OverflowError:
            LOGGER.warning("GBM step overflowed (log return %.3g)", log_return)
            return math.inf
