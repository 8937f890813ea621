"""
Distribution risk metrics: percentiles, VaR, CVaR, and higher moments.

All functions accept EV samples (higher is better), so VaR and CVaR are
reported on the EV scale rather than as positive losses.
"""

import math

import numpy as np

PERCENTILE_LADDER = (5, 10, 25, 50, 75, 90, 95)


def round_to(value: float, digits: int = 0) -> float:
    """Round half up to `digits` decimals."""
    scale = 10.0 ** digits
    return math.floor(value * scale + 0.5) / scale


def round_int(value: float) -> int:
    """Nearest integer with .5 rounded toward +inf."""
    return int(math.floor(value + 0.5))


class RiskMetrics:
    """Statistics over a sample of EV outcomes."""

    @staticmethod
    def percentile(sorted_values: np.ndarray, pct: float) -> float:
        """
        Linear interpolation between closest ranks.

        index = pct/100 * (n - 1), interpolating between floor and ceil.
        """
        if len(sorted_values) == 0:
            return 0.0
        return float(np.percentile(sorted_values, pct))

    @classmethod
    def var(cls, sorted_values: np.ndarray, confidence: float = 0.95) -> float:
        """Value at Risk: the (1 - confidence) percentile of EV."""
        return cls.percentile(sorted_values, 100 * (1 - confidence))

    @staticmethod
    def cvar(sorted_values: np.ndarray, tail_pct: float = 5.0) -> float:
        """
        Conditional VaR (Expected Shortfall): mean of the worst tail_pct% of
        outcomes. With too few samples to fill the tail, the single worst
        outcome is returned.
        """
        n = len(sorted_values)
        if n == 0:
            return 0.0
        cutoff = int(math.floor(tail_pct * n / 100.0))
        if cutoff == 0:
            return float(sorted_values[0])
        return float(np.mean(sorted_values[:cutoff]))

    @staticmethod
    def skewness(values: np.ndarray, mean: float, std: float) -> float:
        if std == 0 or len(values) < 3:
            return 0.0
        z = (np.asarray(values, dtype=float) - mean) / std
        return float(np.mean(z ** 3))

    @staticmethod
    def excess_kurtosis(values: np.ndarray, mean: float, std: float) -> float:
        """Fourth standardized moment minus 3 (normal = 0)."""
        if std == 0 or len(values) < 4:
            return 0.0
        z = (np.asarray(values, dtype=float) - mean) / std
        return float(np.mean(z ** 4) - 3.0)

    @classmethod
    def percentile_ladder(cls, sorted_values: np.ndarray,
                          ladder: tuple = PERCENTILE_LADDER) -> dict:
        return {f"p{p}": cls.percentile(sorted_values, p) for p in ladder}
