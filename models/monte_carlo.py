"""
Monte Carlo ensemble over single-branch simulations.

One baseline snapshot is fetched per run and reused for every iteration, so
the only source of variance is the stochastic path process. Mean and
variance are tracked online with Welford's algorithm; the full EV sample is
kept for percentiles and higher moments.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from config.params import MONTE_CARLO, InvalidConfig, MonteCarloParams, SimulationConfig
from models.branch_engine import BranchEngine
from models.events import (
    MONTE_CARLO_COMPLETED,
    MONTE_CARLO_PROGRESS,
    MONTE_CARLO_STARTED,
)
from models.risk_metrics import RiskMetrics, round_int, round_to
from models.types import MonteCarloReport, Outcome, Percentiles

LOGGER = logging.getLogger(__name__)


@dataclass
class RunningStats:
    """
    Welford single-pass mean/variance accumulator.

    delta = x - mean; mean += delta / n; M2 += delta * (x - mean)

    merge() combines two accumulators (Chan et al.), so per-worker
    accumulators can be reduced into one.
    """

    n: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def push(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean += delta / self.n
        delta2 = x - self.mean
        self.m2 += delta * delta2

    def merge(self, other: RunningStats) -> RunningStats:
        if other.n == 0:
            return RunningStats(self.n, self.mean, self.m2)
        if self.n == 0:
            return RunningStats(other.n, other.mean, other.m2)
        n = self.n + other.n
        delta = other.mean - self.mean
        mean = self.mean + delta * other.n / n
        m2 = self.m2 + other.m2 + delta ** 2 * self.n * other.n / n
        return RunningStats(n, mean, m2)

    @property
    def variance(self) -> float:
        """Unbiased sample variance; 0 with fewer than two samples."""
        return self.m2 / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    @property
    def standard_error(self) -> float:
        if self.n < 2:
            return math.inf
        return self.std / math.sqrt(self.n)


def build_report(samples: Sequence[float], stats: RunningStats,
                 success_count: int, failure_count: int,
                 converged: bool, iterations_run: int) -> MonteCarloReport:
    """Summarize an EV sample; an empty sample yields the zeroed report."""
    n = len(samples)
    if n == 0:
        return MonteCarloReport.empty(iterations_run)

    values = np.asarray(samples, dtype=float)
    sorted_values = np.sort(values)
    mean = stats.mean
    std = stats.std
    standard_error = std / math.sqrt(n)

    ladder = RiskMetrics.percentile_ladder(sorted_values)
    pct = RiskMetrics.percentile

    return MonteCarloReport(
        mean_ev=round_int(mean),
        median_ev=round_int(ladder["p50"]),
        std_ev=round_to(std, 2),
        success_probability=round_to(success_count / n, 4),
        failure_probability=round_to(failure_count / n, 4),
        confidence_interval_95=(round_int(pct(sorted_values, 2.5)),
                                round_int(pct(sorted_values, 97.5))),
        confidence_interval_99=(round_int(pct(sorted_values, 0.5)),
                                round_int(pct(sorted_values, 99.5))),
        var_95=round_int(RiskMetrics.var(sorted_values, 0.95)),
        var_99=round_int(RiskMetrics.var(sorted_values, 0.99)),
        cvar_95=round_int(RiskMetrics.cvar(sorted_values, 5.0)),
        percentiles=Percentiles(**{k: round_int(v) for k, v in ladder.items()}),
        converged=converged,
        iterations_run=iterations_run,
        convergence_metric=round_to(standard_error, 3),
        sample_size=n,
        skewness=round_to(RiskMetrics.skewness(values, mean, std), 2),
        kurtosis=round_to(RiskMetrics.excess_kurtosis(values, mean, std), 2),
    )


class MonteCarloEngine:
    """Runs repeated single-branch simulations until convergence or budget."""

    def __init__(self, branch_engine: BranchEngine | None = None,
                 params: MonteCarloParams = MONTE_CARLO):
        self.branch_engine = branch_engine or BranchEngine()
        self.params = params

    @property
    def hooks(self):
        return self.branch_engine.hooks

    def _check_convergence(self, stats: RunningStats, last_mean: float,
                           threshold: float) -> tuple[bool, str]:
        standard_error = stats.standard_error
        if standard_error < threshold:
            return True, f"SE {standard_error:.4f} < {threshold}"

        if last_mean != 0:
            change_pct = abs(stats.mean - last_mean) / abs(last_mean) * 100.0
        else:
            change_pct = 100.0
        if change_pct < self.params.mean_stability_pct and standard_error < 2 * threshold:
            return True, f"mean stabilized ({change_pct:.3f}% change, SE {standard_error:.4f})"
        return False, ""

    async def run_monte_carlo(self, config: SimulationConfig,
                              max_iterations: int | None = None,
                              min_iterations: int | None = None,
                              convergence_threshold: float | None = None,
                              check_interval: int | None = None,
                              deadline_seconds: float | None = None,
                              should_stop: Callable[[], bool] | None = None) -> MonteCarloReport:
        """
        Run the ensemble and return its risk report.

        `deadline_seconds` and `should_stop` end the run early; the report is
        then built from the samples collected so far with converged=False.
        """
        p = self.params
        max_iterations = p.max_iterations if max_iterations is None else max_iterations
        min_iterations = p.min_iterations if min_iterations is None else min_iterations
        threshold = p.convergence_threshold if convergence_threshold is None else convergence_threshold
        check_interval = p.check_interval if check_interval is None else check_interval
        if check_interval < 1:
            raise InvalidConfig("check_interval must be at least 1")

        config.validate()
        self.hooks.emit(MONTE_CARLO_STARTED, {"config": config, "max_iterations": max_iterations})

        baseline = await self.branch_engine.resolve_snapshot()
        generator = self.branch_engine.generator
        scorer = self.branch_engine.scorer

        samples: list[int] = []
        stats = RunningStats()
        success_count = 0
        failure_count = 0
        converged = False
        iterations_run = 0
        last_mean = 0.0
        started = time.monotonic()
        run_id = f"mc-{int(time.time() * 1000)}"

        for i in range(max_iterations):
            if deadline_seconds is not None and time.monotonic() - started >= deadline_seconds:
                LOGGER.warning("Monte Carlo deadline reached after %d iterations", iterations_run)
                break
            if should_stop is not None and should_stop():
                LOGGER.info("Monte Carlo stopped by caller after %d iterations", iterations_run)
                break

            iterations_run = i + 1
            branch = await generator.create_branch(0, 1, config, baseline, branch_id=f"{run_id}-{i}")

            raw_ev = scorer.branch_ev(branch.predictions)
            if raw_ev is None or not math.isfinite(raw_ev):
                LOGGER.warning("Monte Carlo iteration %d: invalid EV, skipping", i)
                continue
            ev = round_int(raw_ev)

            samples.append(ev)
            stats.push(ev)
            if branch.outcome == Outcome.SUCCESS:
                success_count += 1
            elif branch.outcome == Outcome.FAILURE:
                failure_count += 1

            n = stats.n
            if n >= min_iterations and n % check_interval == 0:
                converged, reason = self._check_convergence(stats, last_mean, threshold)
                if converged:
                    LOGGER.info("Monte Carlo converged after %d iterations: %s", n, reason)
                    break
                last_mean = stats.mean

            if iterations_run % p.progress_interval == 0:
                self.hooks.emit(MONTE_CARLO_PROGRESS, {
                    "iteration": iterations_run,
                    "max_iterations": max_iterations,
                    "current_mean": stats.mean,
                })

        report = build_report(samples, stats, success_count, failure_count,
                              converged, iterations_run)
        self.hooks.emit(MONTE_CARLO_COMPLETED, {"report": report})
        return report

    async def run_batch_monte_carlo(self, configs: Sequence[SimulationConfig],
                                    iterations_per_config: int | None = None) -> dict[str, MonteCarloReport]:
        """One Monte Carlo run per config, keyed scenario-{i}-h{horizon}-b{branches}."""
        iterations = self.params.batch_iterations if iterations_per_config is None else iterations_per_config
        results = {}
        for i, config in enumerate(configs):
            key = f"scenario-{i}-h{config.time_horizon:g}-b{config.branch_count}"
            LOGGER.info("Running Monte Carlo for scenario %d/%d", i + 1, len(configs))
            results[key] = await self.run_monte_carlo(config, max_iterations=iterations)
        return results
