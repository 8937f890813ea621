"""
Expected-value scoring for prediction steps and whole branches.

Step EV (percent units):
    EV_i = 100 * (S_i - S_0) / S_0 + y_i * (i + 1) / 365 - 8 * σ_i - 200 * (d_a + d_b)

Branch EV: exponentially time-decayed mean, w_i = exp(-λ i).

Persisted EV values are integers (rounded half up) bounded to ±1000.
"""

import logging
import math
from typing import Sequence

from config.params import SCORING, ScoringParams
from models.risk_metrics import round_int
from models.types import MarketSnapshot, PredictionStep

LOGGER = logging.getLogger(__name__)


class EVScorer:
    """Risk-adjusted expected value of a forecast path."""

    def __init__(self, params: ScoringParams = SCORING):
        self.volatility_penalty = params.volatility_penalty
        self.peg_penalty = params.peg_penalty
        self.ev_bound = params.ev_bound
        self.decay_lambda = params.decay_lambda

    def raw_step_ev(self, step: PredictionStep, step_index: int,
                    snapshot: MarketSnapshot) -> float:
        return_pct = (step.price - snapshot.price) / snapshot.price * 100.0
        yield_return = step.yield_pct * (step_index + 1) / 365.0
        vol_penalty = step.volatility * self.volatility_penalty
        peg_penalty = (step.peg_deviation_a + step.peg_deviation_b) * self.peg_penalty
        return return_pct + yield_return - vol_penalty - peg_penalty

    def bound(self, value: float, label: str = "EV") -> int:
        """Clamp to ±ev_bound and round; non-finite values become 0."""
        if value is None or not math.isfinite(value):
            LOGGER.warning("Invalid %s value (%r), defaulting to 0", label, value)
            return 0
        clamped = max(-self.ev_bound, min(self.ev_bound, value))
        return round_int(clamped)

    def step_ev(self, step: PredictionStep, step_index: int,
                snapshot: MarketSnapshot) -> int:
        try:
            raw = self.raw_step_ev(step, step_index, snapshot)
        except (ZeroDivisionError, OverflowError):
            raw = math.nan
        return self.bound(raw, label=f"EV at prediction {step_index}")

    def score_steps(self, predictions: Sequence[PredictionStep],
                    snapshot: MarketSnapshot) -> None:
        """Fill `ev` on every step, relative to the initial snapshot."""
        for idx, step in enumerate(predictions):
            step.ev = self.step_ev(step, idx, snapshot)

    def branch_ev(self, predictions: Sequence[PredictionStep]) -> float:
        if not predictions:
            return 0.0

        weighted_sum = 0.0
        total_weight = 0.0
        for idx, step in enumerate(predictions):
            weight = math.exp(-self.decay_lambda * idx)
            weighted_sum += step.ev * weight
            total_weight += weight

        if total_weight == 0:
            return 0.0
        return weighted_sum / total_weight

    def branch_score(self, predictions: Sequence[PredictionStep]) -> int:
        return self.bound(self.branch_ev(predictions), label="branch EV")
