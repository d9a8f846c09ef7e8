"""Version subcommand for the ledgerfolio CLI."""

from importlib.metadata import PackageNotFoundError, version


def register_subcommand(subparsers):
    """Register the version subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers object to register with.
    """
    parser = subparsers.add_parser(
        "version",
        help="Display ledgerfolio version information",
        description="Display the installed ledgerfolio version.",
    )
    parser.set_defaults(func=run)


def run(args):
    """Display version information.

    Args:
        args: Parsed CLI arguments.

    Returns:
        int: Exit code (0 for success).
    """
    try:
        ver = version("ledgerfolio")
    except PackageNotFoundError:
        ver = "unknown"

    print(f" Version: {ver}")
    return 0
