#!/usr/bin/env python3
"""Main entry point for the ledgerfolio CLI."""

import argparse
import sys

INVESTING_WARNING = (
    " \033[33m⚠  Prices and exchange rates come from free public sources and may be\n"
    "    delayed or incomplete. Nothing here should be construed as investment advice.\033[0m"
)


def main():
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="ledgerfolio",
        description="ledgerfolio - portfolio tracking from a ledger of buy/sell operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ledgerfolio report operations.xlsx            Display open positions and totals
  ledgerfolio report operations.json -b IBKR    Only positions held at one broker
  ledgerfolio closed operations.xlsx            Display FIFO-matched closed trades
  ledgerfolio metrics operations.json           Display risk metrics
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .report import register_subcommand as register_report
    from .closed import register_subcommand as register_closed
    from .metrics import register_subcommand as register_metrics
    from .version import register_subcommand as register_version

    register_report(subparsers)
    register_closed(subparsers)
    register_metrics(subparsers)
    register_version(subparsers)

    args = parser.parse_args()

    # If no command specified, show help
    if args.command is None:
        parser.print_help()
        return 0

    if args.command != "version":
        print(INVESTING_WARNING)
        print()

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
