"""Tests for distribution risk metrics and the Welford accumulator."""

import math

import numpy as np
import pytest

from models.monte_carlo import RunningStats, build_report
from models.risk_metrics import RiskMetrics, round_int, round_to


class TestRounding:
    def test_half_up(self):
        assert round_int(2.5) == 3
        assert round_int(-2.5) == -2
        assert round_int(-2.51) == -3
        assert round_to(0.12346, 4) == pytest.approx(0.1235)


class TestRiskMetrics:
    def test_percentile_linear_interpolation(self):
        values = np.array([10.0, 20.0, 30.0, 40.0, 50.0])
        # index = 0.3 * 4 = 1.2 -> 20 + 0.2 * 10
        assert RiskMetrics.percentile(values, 30) == pytest.approx(22.0)
        assert RiskMetrics.percentile(values, 0) == pytest.approx(10.0)
        assert RiskMetrics.percentile(values, 100) == pytest.approx(50.0)

    def test_percentile_empty(self):
        assert RiskMetrics.percentile(np.array([]), 50) == 0.0

    def test_var_is_lower_tail(self):
        values = np.sort(np.arange(100, dtype=float))
        assert RiskMetrics.var(values, 0.95) == pytest.approx(np.percentile(values, 5))
        assert RiskMetrics.var(values, 0.99) == pytest.approx(np.percentile(values, 1))

    def test_cvar_is_tail_mean(self):
        values = np.arange(1, 101, dtype=float)
        # worst 5 of 100 outcomes
        assert RiskMetrics.cvar(values, 5.0) == pytest.approx(3.0)

    def test_cvar_small_sample_uses_worst(self):
        values = np.array([-7.0, 1.0, 4.0])
        assert RiskMetrics.cvar(values, 5.0) == pytest.approx(-7.0)

    def test_cvar_not_above_var(self):
        rng = np.random.default_rng(11)
        for n in (20, 57, 400, 3000):
            values = np.sort(rng.standard_t(3, n) * 10)
            assert RiskMetrics.cvar(values, 5.0) <= RiskMetrics.var(values, 0.95)

    def test_moments_of_normal_sample(self):
        rng = np.random.default_rng(5)
        values = rng.normal(0.0, 1.0, 200_000)
        mean, std = float(np.mean(values)), float(np.std(values, ddof=1))
        assert abs(RiskMetrics.skewness(values, mean, std)) < 0.05
        assert abs(RiskMetrics.excess_kurtosis(values, mean, std)) < 0.1

    def test_moments_degenerate(self):
        values = np.full(10, 4.0)
        assert RiskMetrics.skewness(values, 4.0, 0.0) == 0.0
        assert RiskMetrics.excess_kurtosis(values, 4.0, 0.0) == 0.0
        assert RiskMetrics.skewness(np.array([1.0, 2.0]), 1.5, 0.7) == 0.0
        assert RiskMetrics.excess_kurtosis(np.array([1.0, 2.0, 3.0]), 2.0, 1.0) == 0.0

    def test_right_skew_positive(self):
        rng = np.random.default_rng(9)
        values = rng.exponential(1.0, 50_000)
        mean, std = float(np.mean(values)), float(np.std(values, ddof=1))
        assert RiskMetrics.skewness(values, mean, std) > 1.5


class TestRunningStats:
    def test_matches_numpy(self):
        rng = np.random.default_rng(3)
        values = rng.normal(50.0, 12.0, 1000)
        stats = RunningStats()
        for v in values:
            stats.push(v)
        assert stats.n == 1000
        assert stats.mean == pytest.approx(np.mean(values), rel=1e-12)
        assert stats.variance == pytest.approx(np.var(values, ddof=1), rel=1e-9)
        assert stats.standard_error == pytest.approx(np.std(values, ddof=1) / math.sqrt(1000))

    def test_merge_equals_single_pass(self):
        rng = np.random.default_rng(4)
        values = rng.normal(-3.0, 2.0, 700)
        left, right, whole = RunningStats(), RunningStats(), RunningStats()
        for v in values[:250]:
            left.push(v)
        for v in values[250:]:
            right.push(v)
        for v in values:
            whole.push(v)
        merged = left.merge(right)
        assert merged.n == whole.n
        assert merged.mean == pytest.approx(whole.mean, rel=1e-12)
        assert merged.m2 == pytest.approx(whole.m2, rel=1e-9)

    def test_merge_with_empty(self):
        stats = RunningStats()
        stats.push(5.0)
        assert stats.merge(RunningStats()).mean == 5.0
        assert RunningStats().merge(stats).n == 1

    def test_small_samples(self):
        stats = RunningStats()
        assert stats.variance == 0.0
        assert math.isinf(stats.standard_error)
        stats.push(1.0)
        assert math.isinf(stats.standard_error)


class TestBuildReport:
    def test_empty_report_is_zeroed(self):
        report = build_report([], RunningStats(), 0, 0, converged=True, iterations_run=12)
        assert report.sample_size == 0
        assert report.converged is False
        assert report.iterations_run == 12
        assert report.mean_ev == 0
        assert report.var_95 == 0 and report.cvar_95 == 0
        assert report.confidence_interval_95 == (0, 0)
        assert math.isinf(report.convergence_metric)
        assert report.to_dict()["convergence_metric"] is None

    def test_report_fields(self):
        samples = list(range(-50, 51))
        stats = RunningStats()
        for s in samples:
            stats.push(s)
        report = build_report(samples, stats, 30, 20, converged=True, iterations_run=101)

        assert report.mean_ev == 0
        assert report.median_ev == 0
        assert report.sample_size == 101
        assert report.success_probability == pytest.approx(round(30 / 101, 4))
        assert report.failure_probability == pytest.approx(round(20 / 101, 4))
        assert report.percentiles.p5 == -45
        assert report.percentiles.p95 == 45
        assert report.var_95 == -45
        assert report.var_99 == -49
        # worst floor(0.05 * 101) = 5 samples: -50..-46
        assert report.cvar_95 == -48
        assert report.cvar_95 <= report.var_95
        assert report.skewness == pytest.approx(0.0)
        assert report.kurtosis < 0
        ladder = [report.percentiles.p5, report.percentiles.p10, report.percentiles.p25,
                  report.percentiles.p50, report.percentiles.p75, report.percentiles.p90,
                  report.percentiles.p95]
        assert ladder == sorted(ladder)
