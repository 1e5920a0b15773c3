#!/usr/bin/env python3
"""Main entry point for the positionbook CLI."""

import argparse
import sys


def main():
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="positionbook",
        description="positionbook - track holdings derived from a buy/sell transaction log",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  positionbook buy AAPL 10 150                 Record a purchase
  positionbook sell 005930 5 72000             Record a sale (KRW inferred)
  positionbook log --type sell --month 3       List March sales
  positionbook report -c USD                   Positions valued in USD
  positionbook rebuild                         Recompute positions from the log
        """,
    )
    parser.add_argument("--config", default=None, help="Path to config.json (default: <data dir>/config.json)")
    parser.add_argument("--data-dir", default=None, help="Directory of the primary JSON store")

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .report import register_subcommand as register_report
    from .log import register_subcommand as register_log
    from .trade import register_subcommand as register_trade
    from .quote import register_subcommand as register_quote
    from .principal import register_subcommand as register_principal
    from .rebuild import register_subcommand as register_rebuild
    from .status import register_subcommand as register_status
    from .version import register_subcommand as register_version

    register_report(subparsers)
    register_log(subparsers)
    register_trade(subparsers)
    register_quote(subparsers)
    register_principal(subparsers)
    register_rebuild(subparsers)
    register_status(subparsers)
    register_version(subparsers)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
