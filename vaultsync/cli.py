"""Command-line interface for the session & risk synchronizer."""
from __future__ import annotations

import argparse
import asyncio
import math
import sys

from .config import AppConfig, load_config
from .currencies import DEFAULT_CURRENCIES, CurrencyRegistry, PairBook
from .errors import RiskError
from .logging_setup import configure_logging
from .risk import PositionRiskEngine, RateConversionTable
from .services import Runtime


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Wallet session, realtime channel and position risk synchronizer",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    watch_parser = sub.add_parser("watch", help="Stream live updates and log risk tiers")
    watch_parser.add_argument(
        "seconds",
        nargs="?",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until the channel fails)",
    )

    assess_parser = sub.add_parser("assess", help="One-shot risk assessment")
    assess_parser.add_argument("collateral", type=float, help="Collateral value")
    assess_parser.add_argument("borrowed", type=float, help="Borrowed value")
    assess_parser.add_argument(
        "--pair",
        default=None,
        help="Collateral/borrow pair (e.g. cEUR/cUSD) to take the liquidation threshold from",
    )
    assess_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Liquidation threshold in percent (overrides --pair)",
    )

    sub.add_parser("rates", help="Show the configured exchange-rate table")

    return parser


def _assess(config: AppConfig, args: argparse.Namespace) -> int:
    engine = PositionRiskEngine(config.risk)
    registry = CurrencyRegistry(config.currencies or DEFAULT_CURRENCIES)

    threshold = args.threshold
    if threshold is None and args.pair:
        collateral, _, borrow = args.pair.partition("/")
        pair = PairBook(config.pairs, registry).get(collateral, borrow)
        if pair is None:
            print(f"Unknown pair: {args.pair}", file=sys.stderr)
            return 2
        threshold = pair.liquidation_threshold
    if threshold is None:
        print("Provide --threshold or a configured --pair", file=sys.stderr)
        return 2

    try:
        hf = engine.compute_health_factor(args.collateral, args.borrowed)
        ratio = engine.compute_collateral_ratio(args.collateral, args.borrowed)
        tier = engine.classify(hf, threshold)
    except RiskError as e:
        print(f"Risk unavailable: {e}", file=sys.stderr)
        return 1

    hf_str = "∞" if math.isinf(hf) else f"{hf:.2f}%"
    ratio_str = "∞" if math.isinf(ratio) else f"{ratio:.2f}%"
    print(f"Health factor:       {hf_str}")
    print(f"Collateral ratio:    {ratio_str}")
    print(f"Liquidation at:      {threshold:.2f}%")
    print(f"Risk tier:           {tier.value.upper()}")
    return 0


def _rates(config: AppConfig) -> int:
    table = RateConversionTable(config.rates)
    if not len(table):
        print("No rates configured.")
        return 0
    for rate in table.rates():
        print(
            f"{rate.from_currency:>6} -> {rate.to_currency:<6} {rate.rate:>12.6f}"
            f"  ({rate.change_24h:+.2f}% 24h, {rate.source or 'unknown'})"
        )
    return 0


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "watch":
        await Runtime(config).run(args.seconds)
    elif args.command == "assess":
        sys.exit(_assess(config, args))
    elif args.command == "rates":
        sys.exit(_rates(config))
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass
