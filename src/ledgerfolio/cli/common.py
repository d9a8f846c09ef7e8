"""Helpers shared by the file-based subcommands."""

import sys
import warnings

from ..config import Config
from ..currency import Currency
from ..ledger import InMemoryLedgerStore, load_operations
from ..tracker import PortfolioTracker


def add_file_arguments(parser):
    """Add the ledger file and common options to a subcommand parser."""
    parser.add_argument("filename", help="Path to the operations file (.json or .xlsx)")
    parser.add_argument(
        "--currency",
        "-c",
        default=None,
        help="Reporting currency (default: LEDGERFOLIO_REPORTING_CURRENCY or USD)",
    )
    parser.add_argument(
        "--ignore-errors",
        action="store_true",
        help="Hide warnings about oversold positions and missing rates",
    )


def load_tracker(args) -> tuple[PortfolioTracker, Config, Currency] | None:
    """Load the ledger file named in ``args`` into a tracker.

    Prints an error and returns None if the configuration, the currency or
    the file is invalid.
    """
    if args.ignore_errors:
        warnings.filterwarnings("ignore", category=UserWarning)

    try:
        config = Config.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None

    reporting_currency = config.reporting_currency
    if args.currency:
        try:
            reporting_currency = Currency(args.currency.upper())
        except ValueError:
            print(f"Error: Unknown currency '{args.currency}'", file=sys.stderr)
            return None

    try:
        operations = load_operations(args.filename)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return None

    tracker = PortfolioTracker(InMemoryLedgerStore(operations), config=config)
    return tracker, config, reporting_currency


def color_signed(value, suffix: str = "", prefix: str = "") -> str:
    """Format a number green when non-negative and red when negative."""
    if value >= 0:
        return f"[green]+{prefix}{value:,.2f}{suffix}[/green]"
    return f"[red]-{prefix}{abs(value):,.2f}{suffix}[/red]"
