"""Command-line interface for the margin ledger liquidator."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import load_config
from .errors import ConfigurationError
from .logging_setup import configure_logging
from .services import LiquidationCoordinator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="margin-ledger",
        description="Margin ledger valuation and liquidation service",
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

    sub.add_parser("check", help="Run one scan cycle (liquidates if needed)")
    sub.add_parser("report", help="Print every account's valuation; takes no action")

    run_parser = sub.add_parser("run", help="Continuous liquidation loop")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Scan interval in seconds (overrides config)",
    )

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    config = load_config(args.config)
    coordinator = LiquidationCoordinator(config)
    await coordinator.startup()

    if args.command == "check":
        cycle = await coordinator.run_cycle()
        for report in cycle.accounts:
            print(f"{report.account_id}\t{report.outcome.value}\t{report.detail}")
    elif args.command == "report":
        print(await coordinator.build_report())
    elif args.command == "run":
        await coordinator.run_forever(args.interval)
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

    configure_logging(args.log_level)
    try:
        asyncio.run(_run(args))
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error("Startup failed: %s", e)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted")
