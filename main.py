import argparse
import logging
import sys
import time

from rebalancer import config
from rebalancer.enums import ThresholdMode
from rebalancer.errors import RebalancerError
from rebalancer.plan_engine import PlanEngine
from rebalancer.plan_report import PlanReport
from rebalancer.snapshot_loader import SnapshotLoader


def build_parser():
    parser = argparse.ArgumentParser(
        description="Rank a portfolio's strategies and print one rebalance cycle."
    )
    parser.add_argument("strategies", help="CSV file, one row per strategy")
    parser.add_argument("portfolio", help="JSON file describing the portfolio")
    parser.add_argument(
        "--now", type=int, default=None,
        help="Cycle timestamp in unix seconds (default: current time)",
    )
    parser.add_argument(
        "--threshold-mode",
        choices=[m.value for m in ThresholdMode],
        default=config.DEFAULT_THRESHOLD_MODE.value,
        help="dynamic (volatility-driven) or fixed (portfolio's configured threshold)",
    )
    parser.add_argument(
        "--log-level", default=config.DEFAULT_LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format=config.LOG_FORMAT)

    now = args.now if args.now is not None else int(time.time())
    loader = SnapshotLoader()

    try:
        strategies = loader.load_strategies(args.strategies)
        portfolio = loader.load_portfolio(args.portfolio)
        outcome = PlanEngine.run_cycle(
            portfolio,
            [s.to_performance() for s in strategies],
            now=now,
            threshold_mode=ThresholdMode(args.threshold_mode),
        )
    except (RebalancerError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    report = PlanReport.explain(outcome.ranking, outcome.plan)
    print(PlanReport.format_for_cli(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
