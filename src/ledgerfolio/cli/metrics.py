#!/usr/bin/env python3
"""Metrics subcommand - Display portfolio risk metrics."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..currency import currency_symbol
from ..metrics import (
    calculate_daily_returns,
    calculate_downside_volatility,
    calculate_max_drawdown_with_dates,
    calculate_risk_metrics,
)
from .common import add_file_arguments, load_tracker


def format_percentage(value: float | None, precision: int = 2) -> str:
    """Format a decimal value as a percentage string.

    Args:
        value: Decimal value to format (e.g. 0.05 becomes "5.00%").
        precision: Number of decimal places in the output.

    Returns:
        Formatted percentage string, or "N/A" if value is None.
    """
    if value is None:
        return "N/A"
    return f"{value * 100:.{precision}f}%"


def register_subcommand(subparsers):
    """Register the metrics subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "metrics",
        help="Display portfolio risk metrics",
        description="Display volatility, Sharpe ratio and drawdown of the portfolio value history.",
    )
    add_file_arguments(parser)
    parser.add_argument(
        "--risk-free-rate",
        type=float,
        default=None,
        help="Annual risk-free rate as a decimal (default: LEDGERFOLIO_RISK_FREE_RATE or 0.02)",
    )
    parser.set_defaults(func=run)


def run(args):
    """Display risk metrics over the portfolio's recent value history.

    Args:
        args: Parsed argparse namespace with filename, risk_free_rate and
            ignore_errors attributes.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    loaded = load_tracker(args)
    if loaded is None:
        return 1
    tracker, config, reporting_currency = loaded

    console = Console()
    risk_free_rate = args.risk_free_rate if args.risk_free_rate is not None else config.risk_free_rate

    tracker.refresh_market_data()
    series = tracker.value_series()

    if len(series) < 2:
        console.print("[yellow]Not enough price history to compute metrics.[/yellow]")
        return 0

    dates = list(series.keys())
    values = list(series.values())
    metrics = calculate_risk_metrics(values, risk_free_rate)
    returns = calculate_daily_returns(values)
    _, downside_volatility = calculate_downside_volatility(returns)
    max_drawdown, peak_date, trough_date = calculate_max_drawdown_with_dates(series)

    console.print(f"\n[bold]Portfolio Metrics Report[/bold] - {dates[0]} to {dates[-1]} ({len(dates)} days)")

    risk_table = Table(title="Risk-Adjusted Returns")
    risk_table.add_column("Metric", style="cyan")
    risk_table.add_column("Value", justify="right")
    risk_table.add_row("Annualized Return", format_percentage(metrics.annualized_return))
    risk_table.add_row("Annualized Volatility", format_percentage(metrics.volatility))
    risk_table.add_row("Downside Volatility", format_percentage(downside_volatility))
    risk_table.add_row("Sharpe Ratio", f"{metrics.sharpe_ratio:.2f}")
    risk_table.add_row("Risk-Free Rate", format_percentage(risk_free_rate))
    console.print(risk_table)
    console.print()

    dd_table = Table(title="Drawdown")
    dd_table.add_column("Metric", style="cyan")
    dd_table.add_column("Value", justify="right")
    dd_table.add_row("Maximum Drawdown", f"[red]{format_percentage(max_drawdown)}[/red]")
    dd_table.add_row("Peak Date", peak_date.isoformat() if peak_date else "N/A")
    dd_table.add_row("Trough Date", trough_date.isoformat() if trough_date else "N/A")
    console.print(dd_table)
    console.print()

    fx = tracker.exchange_rate_manager
    symbol = currency_symbol(reporting_currency)
    start_value = fx.from_usd(values[0], reporting_currency)
    end_value = fx.from_usd(values[-1], reporting_currency)
    console.print(
        Panel(
            f"Start Value: {symbol}{start_value:,.2f}\nEnd Value: {symbol}{end_value:,.2f}",
            title=f"Value History ({reporting_currency.value})",
        )
    )
    return 0
