#!/usr/bin/env python3
"""
ILGuard -- Impermanent Loss Protection
======================================

Forecasts impermanent loss for a concentrated-liquidity position and
turns the forecast into a rebalance / hold decision.

Usage:
  python run.py il       100 84 --value 10000                   IL calculator (offline)
  python run.py price    SOL/USD USDC/USD                        Live Pyth quotes
  python run.py assess   SOL-USDC --entry 100 --lower 90 --upper 110 --value 10000
  python run.py watch    SOL-USDC --entry 100 --lower 90 --upper 110 --interval 30
  python run.py simulate --drift -0.5 --minutes 30               Offline simulation
  python run.py info                                             Tunables & sources

Sources:
  Pintail (2019) IL : https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
  Pyth Hermes       : https://docs.pyth.network/price-feeds/api-instances-and-providers/hermes
"""

import sys
import asyncio
import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from ilguard.central_config import PROJECT_VERSION, PROJECT_NAME  # noqa: E402
from ilguard.commands import (  # noqa: E402
    cmd_info,
    cmd_il,
    cmd_price,
    cmd_assess,
    cmd_watch,
    cmd_simulate,
)


# ── CLI Parser ────────────────────────────────────────────────────────────


def _add_position_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("pair", help="Token pair, e.g. SOL-USDC")
    p.add_argument("--entry", type=float, required=True, help="Entry price")
    p.add_argument("--lower", type=float, required=True, help="Range lower bound")
    p.add_argument("--upper", type=float, required=True, help="Range upper bound")
    p.add_argument(
        "--value", type=float, default=10_000, help="Position value in USD (default: 10000)"
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ilguard",
        description=f"{PROJECT_NAME} v{PROJECT_VERSION} — Impermanent Loss Protection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py il 100 200                                   IL if price doubles
  python run.py price SOL/USD                                Live SOL price
  python run.py assess SOL-USDC --entry 100 --lower 90 --upper 110
  python run.py watch SOL-USDC --entry 100 --lower 90 --upper 110 --duration 600
  python run.py simulate --entry 100 --lower 90 --upper 110 --drift -1

Tunables are read from ILGUARD_* environment variables (or a .env file):
  ILGUARD_HISTORY_CAPACITY, ILGUARD_VOLATILITY_WINDOW_MINUTES,
  ILGUARD_PREDICTION_HORIZON_MINUTES, ILGUARD_RISK_WEIGHTS,
  ILGUARD_IL_THRESHOLDS, ILGUARD_GAS_COST_USD,
  ILGUARD_MIN_SAVINGS_MULTIPLIER, ILGUARD_MITIGATION_EFFICACY,
  ILGUARD_MONITOR_INTERVAL_SECONDS,
  ILGUARD_LOG_LEVEL, HERMES_URL
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"{PROJECT_NAME} v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level: DEBUG, INFO, WARNING, ERROR (default: WARNING)",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("info", help="Engine tunables & sources")

    il_p = sub.add_parser("il", help="Impermanent loss calculator (offline)")
    il_p.add_argument("initial", type=float, help="Initial (entry) price")
    il_p.add_argument("current", type=float, help="Current price")
    il_p.add_argument(
        "--value", type=float, default=10_000, help="Initial value in USD (default: 10000)"
    )

    price_p = sub.add_parser("price", help="Live prices from Pyth Hermes")
    price_p.add_argument("symbols", nargs="+", help="Feed symbols, e.g. SOL/USD")

    assess_p = sub.add_parser("assess", help="Risk assessment against live prices")
    _add_position_args(assess_p)
    assess_p.add_argument(
        "--samples", type=int, default=5, help="Price samples to collect first (default: 5)"
    )
    assess_p.add_argument(
        "--sample-interval",
        type=float,
        default=2.0,
        help="Seconds between samples (default: 2)",
    )

    watch_p = sub.add_parser("watch", help="Standing monitor with risk alerts")
    _add_position_args(watch_p)
    watch_p.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between checks (default: ILGUARD_MONITOR_INTERVAL_SECONDS or 30)",
    )
    watch_p.add_argument(
        "--duration", type=float, default=300, help="Seconds to watch (default: 300)"
    )

    sim_p = sub.add_parser("simulate", help="Offline simulation on a synthetic price path")
    sim_p.add_argument("--entry", type=float, default=100.0, help="Entry price (default: 100)")
    sim_p.add_argument("--lower", type=float, default=90.0, help="Lower bound (default: 90)")
    sim_p.add_argument("--upper", type=float, default=110.0, help="Upper bound (default: 110)")
    sim_p.add_argument("--value", type=float, default=10_000, help="Value USD (default: 10000)")
    sim_p.add_argument(
        "--drift", type=float, default=-0.5, help="Price drift in %% per minute (default: -0.5)"
    )
    sim_p.add_argument(
        "--noise", type=float, default=0.2, help="Per-step noise in %% (default: 0.2)"
    )
    sim_p.add_argument("--minutes", type=float, default=30, help="Duration (default: 30)")
    sim_p.add_argument("--seed", type=int, default=7, help="Random seed (default: 7)")

    return parser


def _configure_logging(level_name: str = None) -> None:
    level_name = (level_name or os.environ.get("ILGUARD_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Main ──────────────────────────────────────────────────────────────────


def main() -> int:
    load_dotenv()
    parser = create_parser()
    args = parser.parse_args()
    _configure_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0

    if args.command == "il":
        return 0 if cmd_il(args.initial, args.current, args.value) else 1

    if args.command == "price":
        return 0 if asyncio.run(cmd_price(args.symbols)) else 1

    if args.command == "assess":
        score = asyncio.run(
            cmd_assess(
                pair=args.pair,
                entry_price=args.entry,
                lower=args.lower,
                upper=args.upper,
                value_usd=args.value,
                samples=args.samples,
                sample_interval=args.sample_interval,
            )
        )
        return 0 if score is not None else 1

    if args.command == "watch":
        ok = asyncio.run(
            cmd_watch(
                pair=args.pair,
                entry_price=args.entry,
                lower=args.lower,
                upper=args.upper,
                value_usd=args.value,
                interval=args.interval,
                duration=args.duration,
            )
        )
        return 0 if ok else 1

    if args.command == "simulate":
        score = asyncio.run(
            cmd_simulate(
                entry_price=args.entry,
                lower=args.lower,
                upper=args.upper,
                value_usd=args.value,
                drift_pct_per_min=args.drift,
                noise_pct=args.noise,
                minutes=args.minutes,
                seed=args.seed,
            )
        )
        return 0 if score is not None else 1

    parser.print_help()
    return 0


def cli() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
    except ValueError as exc:
        print(f"❌ {exc}")
        sys.exit(2)


if __name__ == "__main__":
    cli()
