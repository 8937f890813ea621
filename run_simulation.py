"""
CLI entry point for the branch forecasting engine.

Usage:
    python run_simulation.py simulate --horizon 60 --branches 5 --interval 10
    python run_simulation.py monte-carlo --max-iterations 2000 --json
    python run_simulation.py simulate --snapshot data/cache/market_snapshot.json --price 2500
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

import numpy as np

from config.params import InvalidConfig, SimulationConfig, params_from_env
from data.fetcher import (
    CachedMarketDataSource,
    JSONFileMarketDataSource,
    StaticMarketDataSource,
)
from models.branch_engine import BranchEngine
from models.ev_scorer import EVScorer
from models.events import MONTE_CARLO_PROGRESS
from models.monte_carlo import MonteCarloEngine
from models.path_generator import PathGenerator
from models.types import MarketDataOverride


def build_engine(args, params: dict) -> BranchEngine:
    """Wire data source, generator, and scorer from CLI args and env params."""
    if args.snapshot:
        source = CachedMarketDataSource(JSONFileMarketDataSource(args.snapshot))
    else:
        d = params["market_defaults"]
        source = StaticMarketDataSource(
            price=d.price, tvl=d.tvl, yield_pct=d.yield_pct,
            gas_price=d.gas_price, volatility=d.volatility,
        )

    rng = np.random.default_rng(args.seed)
    scorer = EVScorer(params["scoring"])
    generator = PathGenerator(
        params=params["path"], scorer=scorer, policy=params["outcome"], rng=rng,
    )
    return BranchEngine(
        data_source=source,
        generator=generator,
        scorer=scorer,
        defaults=params["market_defaults"],
        vol_params=params["volatility"],
    )


def print_branches(branches, best) -> None:
    print(f"  {'Branch':<32} {'Outcome':<9} {'EV':>6} {'Final price':>12} {'Final yield':>12}")
    print("  " + "-" * 75)
    for branch in branches:
        last = branch.predictions[-1]
        marker = " *" if best is not None and branch.id == best.id else ""
        print(f"  {branch.id:<32} {branch.outcome.value:<9} {branch.ev_score:>6d}"
              f" {last.price:>12.2f} {last.yield_pct:>11.2f}%{marker}")


def print_report(report) -> None:
    pct = report.percentiles
    print(f"  Mean EV:         {report.mean_ev}  (median {report.median_ev}, std {report.std_ev})")
    print(f"  P(success):      {report.success_probability:.2%}"
          f"   P(failure): {report.failure_probability:.2%}")
    print(f"  95% interval:    {list(report.confidence_interval_95)}"
          f"   99% interval: {list(report.confidence_interval_99)}")
    print(f"  VaR95 / VaR99:   {report.var_95} / {report.var_99}   CVaR95: {report.cvar_95}")
    print(f"  Percentiles:     p5={pct.p5} p10={pct.p10} p25={pct.p25} p50={pct.p50}"
          f" p75={pct.p75} p90={pct.p90} p95={pct.p95}")
    print(f"  Skew / kurtosis: {report.skewness} / {report.kurtosis}")
    print(f"  Converged:       {report.converged} after {report.iterations_run} iterations"
          f" (SE {report.convergence_metric}, n={report.sample_size})")


async def run(args) -> int:
    params = params_from_env()
    engine = build_engine(args, params)
    config = SimulationConfig(
        time_horizon=args.horizon,
        branch_count=args.branches,
        prediction_interval=args.interval,
    )
    override = MarketDataOverride(
        current_price=args.price, current_tvl=args.tvl, current_yield=args.yield_pct,
    )

    if args.mode == "simulate":
        branches = await engine.run_simulation(config, override)
        best = engine.select_best_branch(branches)
        if args.json:
            print(json.dumps({
                "snapshot": vars(engine.last_market_snapshot) if engine.last_market_snapshot else None,
                "best_branch_id": best.id if best else None,
                "branches": [b.to_dict() for b in branches],
            }, indent=2))
            return 0
        if not branches:
            print("  [WARN] Zero time horizon: no branches generated")
            return 0
        snap = engine.last_market_snapshot
        print(f"  [DATA] Snapshot: price={snap.price:.2f} tvl={snap.tvl:,.0f}"
              f" yield={snap.yield_pct:.2f}% vol={snap.volatility:.3f}")
        print()
        print_branches(branches, best)
        return 0

    mc_params = params["monte_carlo"]
    mc = MonteCarloEngine(engine, mc_params)
    if not args.json:
        mc.hooks.subscribe(MONTE_CARLO_PROGRESS, lambda e: print(
            f"  [MC] iteration {e['iteration']}/{e['max_iterations']}"
            f" mean EV {e['current_mean']:.2f}", file=sys.stderr))
    report = await mc.run_monte_carlo(
        config,
        max_iterations=args.max_iterations,
        min_iterations=args.min_iterations,
        convergence_threshold=args.threshold,
        check_interval=args.check_interval,
        deadline_seconds=args.deadline,
    )
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stochastic branch forecasting and Monte Carlo risk profile"
    )
    parser.add_argument("mode", choices=["simulate", "monte-carlo"])
    parser.add_argument("--horizon", type=float, default=60.0,
                        help="Time horizon in minutes (default: 60)")
    parser.add_argument("--branches", type=int, default=5,
                        help="Number of branches (default: 5)")
    parser.add_argument("--interval", type=float, default=10.0,
                        help="Prediction interval in minutes (default: 10)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducible paths")
    parser.add_argument("--snapshot", type=Path, default=None,
                        help="JSON market snapshot file (default: built-in market defaults)")
    parser.add_argument("--price", type=float, default=None, help="Override current price")
    parser.add_argument("--tvl", type=float, default=None, help="Override current TVL")
    parser.add_argument("--yield", dest="yield_pct", type=float, default=None,
                        help="Override current yield in percent")
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--min-iterations", type=int, default=None)
    parser.add_argument("--threshold", type=float, default=None,
                        help="Convergence threshold on the standard error of mean EV")
    parser.add_argument("--check-interval", type=int, default=None)
    parser.add_argument("--deadline", type=float, default=None,
                        help="Stop Monte Carlo after this many seconds")
    parser.add_argument("--json", action="store_true",
                        help="Output raw JSON instead of formatted text")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main():
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="  [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        sys.exit(asyncio.run(run(args)))
    except InvalidConfig as exc:
        print(f"  [ERROR] Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
