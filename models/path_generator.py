"""
Branch path generation: GBM price with derived TVL, yield, and peg tracks.

Each branch gets a deterministic position on a drift/volatility spectrum:

    drift      = 0.05 + (i/N - 0.5) * 0.2
    vol_factor = 0.8 + (i/N) * 0.4

so branch 0 is bearish and calm while the last branch is bullish and
volatile. Randomness still drives the path shape within each branch.
"""

from __future__ import annotations

import uuid

import numpy as np

from config.params import (
    OUTCOME_POLICY,
    PATH,
    OutcomePolicy,
    PathParams,
    SimulationConfig,
)
from models.depeg_model import PegDeviationModel
from models.ev_scorer import EVScorer
from models.liquidity_model import LiquidityModel
from models.price_simulation import GBMSimulator
from models.types import Branch, MarketSnapshot, Outcome, PredictionStep

MINUTES_PER_DAY = 24 * 60


def classify_outcome(predictions: list[PredictionStep],
                     policy: OutcomePolicy = OUTCOME_POLICY) -> Outcome:
    """Label a scored path as success, failure, or pending."""
    if not predictions:
        return Outcome.PENDING

    final_ev = predictions[-1].ev
    avg_vol = sum(p.volatility for p in predictions) / len(predictions)
    avg_yield = sum(p.yield_pct for p in predictions) / len(predictions)

    if (final_ev > policy.success_min_final_ev
            and avg_yield > policy.success_min_avg_yield
            and avg_vol < policy.success_max_avg_vol):
        return Outcome.SUCCESS
    if final_ev < policy.failure_max_final_ev or avg_vol > policy.failure_min_avg_vol:
        return Outcome.FAILURE
    return Outcome.PENDING


class PathGenerator:
    """
    Generates one scored Branch per call.

    All random draws come from `rng.random()`, so a seeded
    numpy Generator reproduces a branch exactly.
    """

    def __init__(self, params: PathParams = PATH,
                 scorer: EVScorer | None = None,
                 policy: OutcomePolicy = OUTCOME_POLICY,
                 rng: np.random.Generator | None = None):
        self.params = params
        self.scorer = scorer or EVScorer()
        self.policy = policy
        self.rng = rng if rng is not None else np.random.default_rng()
        self.liquidity = LiquidityModel(params)
        self.peg_a, self.peg_b = PegDeviationModel.pair_from_params(params)
        self.gbm = GBMSimulator(rng=self.rng)

    def branch_parameters(self, branch_index: int, branch_count: int) -> tuple[float, float]:
        """(drift, volatility factor) for a branch."""
        position = branch_index / branch_count
        drift = self.params.base_drift + (position - 0.5) * self.params.drift_spread
        vol_factor = self.params.base_vol_factor + position * self.params.vol_factor_spread
        return drift, vol_factor

    def generate_steps(self, config: SimulationConfig, snapshot: MarketSnapshot,
                       drift: float, vol_factor: float) -> list[PredictionStep]:
        time_step_days = config.prediction_interval / MINUTES_PER_DAY
        sigma = snapshot.volatility * vol_factor

        price = snapshot.price
        peg_a = self.peg_a.initial_deviation
        peg_b = self.peg_b.initial_deviation
        steps = []

        for t in range(config.n_intervals):
            price = self.gbm.step(price, sigma, time_step_days, mu=drift)

            tvl = self.liquidity.predict_tvl(snapshot.tvl, price / snapshot.price, self.rng)
            tvl_change = (tvl - snapshot.tvl) / snapshot.tvl
            yield_pct = self.liquidity.predict_yield(snapshot.yield_pct, tvl_change, sigma)

            peg_a = self.peg_a.step(peg_a, self.rng)
            peg_b = self.peg_b.step(peg_b, self.rng)

            steps.append(PredictionStep(
                timestamp=snapshot.timestamp + t * config.prediction_interval * 60.0,
                price=price,
                volatility=sigma,
                tvl=tvl,
                yield_pct=yield_pct,
                peg_deviation_a=peg_a,
                peg_deviation_b=peg_b,
            ))
        return steps

    async def create_branch(self, branch_index: int, branch_count: int,
                            config: SimulationConfig, snapshot: MarketSnapshot,
                            branch_id: str | None = None) -> Branch:
        branch_id = branch_id or f"branch-{uuid.uuid4().hex[:12]}-{branch_index}"
        drift, vol_factor = self.branch_parameters(branch_index, branch_count)

        predictions = self.generate_steps(config, snapshot, drift, vol_factor)
        # EV is measured against the initial snapshot, so score after the full path exists
        self.scorer.score_steps(predictions, snapshot)

        return Branch(
            id=branch_id,
            predictions=predictions,
            outcome=classify_outcome(predictions, self.policy),
            ev_score=self.scorer.branch_score(predictions),
        )
