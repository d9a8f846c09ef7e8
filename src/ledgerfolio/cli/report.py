#!/usr/bin/env python3
"""Report subcommand - Display open positions valued at market prices."""

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..currency import Currency, currency_symbol
from ..valuation import calculate_allocation, calculate_leverage, calculate_sector_allocation, summarize_portfolio
from .common import add_file_arguments, color_signed, load_tracker


def register_subcommand(subparsers):
    """Register the report subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "report",
        help="Display portfolio holdings report",
        description="Display open positions, allocation and leverage from an operations file.",
    )
    add_file_arguments(parser)
    parser.add_argument(
        "--broker",
        "-b",
        default=None,
        help="Only include positions held at this broker (default: all brokers)",
    )
    parser.set_defaults(func=run)


def run(args):
    """Display open positions, totals, allocation and leverage.

    Args:
        args: Parsed argparse namespace with filename, currency, broker and
            ignore_errors attributes.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    loaded = load_tracker(args)
    if loaded is None:
        return 1
    tracker, _, reporting_currency = loaded

    console = Console()
    local_now = datetime.now().astimezone()

    tracker.refresh_market_data()
    assets = tracker.valuation(args.broker)
    summary = summarize_portfolio(assets)

    fx = tracker.exchange_rate_manager
    symbol = currency_symbol(reporting_currency)

    def in_reporting(amount_usd):
        return fx.from_usd(amount_usd, reporting_currency)

    holdings_table = Table(
        title=f"Open Positions on {local_now.strftime('%Y-%m-%d %H:%M %Z')}"
    )
    holdings_table.add_column("Ticker", style="cyan", justify="left")
    holdings_table.add_column("Sector", justify="left")
    holdings_table.add_column("Quantity", style="magenta", justify="right")
    holdings_table.add_column("Unit Price\n(Avg Buy → Market)", justify="right")
    holdings_table.add_column(f"Cost ({reporting_currency.value})", style="yellow", justify="right")
    holdings_table.add_column(f"Value ({reporting_currency.value})", style="green", justify="right")
    holdings_table.add_column("Gain/Loss %", justify="right")
    holdings_table.add_column("Day %", justify="right")

    for asset in assets:
        native = currency_symbol(asset.currency)
        if asset.is_unknown:
            unit_price_str = f"[yellow]{native}{asset.average_buy_price:,.2f}[/yellow] → [red]unknown[/red]"
            day_str = "N/A"
        elif asset.is_pending:
            unit_price_str = f"[yellow]{native}{asset.average_buy_price:,.2f}[/yellow] → pending"
            day_str = "N/A"
        else:
            unit_price_str = (
                f"[yellow]{native}{asset.average_buy_price:,.2f}[/yellow] → "
                f"[green]{native}{asset.current_price:,.2f}[/green]"
            )
            day_str = color_signed(asset.change_percent, suffix="%")

        holdings_table.add_row(
            asset.ticker,
            asset.sector,
            f"{asset.quantity:,.4f}".rstrip("0").rstrip("."),
            unit_price_str,
            f"{symbol}{in_reporting(asset.cost_basis_usd):,.2f}",
            f"{symbol}{in_reporting(asset.market_value_usd):,.2f}",
            color_signed(asset.gain_loss_percent, suffix="%"),
            day_str,
        )

    console.print(holdings_table)

    allocation_table = Table(title="Allocation")
    allocation_table.add_column("Ticker", style="cyan")
    allocation_table.add_column("Weight", justify="right")
    for slice_ in calculate_allocation(assets):
        allocation_table.add_row(slice_.name, f"{slice_.weight * 100:.2f}%")
    console.print(allocation_table)

    sector_table = Table(title="Sector Allocation")
    sector_table.add_column("Sector", style="cyan")
    sector_table.add_column("Weight", justify="right")
    for slice_ in calculate_sector_allocation(assets):
        sector_table.add_row(slice_.name, f"{slice_.weight * 100:.2f}%")
    console.print(sector_table)

    summary_lines = [
        f"[bold green]Total Value: {symbol}{in_reporting(summary.total_value):,.2f}[/bold green]",
        f"Total Cost: {symbol}{in_reporting(summary.total_cost):,.2f}",
        f"Total P&L: {color_signed(in_reporting(summary.total_gain_loss), prefix=symbol)} "
        f"({color_signed(summary.total_gain_loss_percent, suffix='%')})",
        f"Day Change: {color_signed(in_reporting(summary.daily_change_value), prefix=symbol)} "
        f"({color_signed(summary.daily_change_percent, suffix='%')})",
    ]
    unknown = [a.ticker for a in assets if a.is_unknown]
    if unknown:
        summary_lines.append(f"[red]Unresolved tickers valued at zero: {', '.join(unknown)}[/red]")
    console.print(Panel("\n".join(summary_lines), title="Summary"))

    settings = tracker.settings_store.get()
    if settings.principal_investment > 0 or settings.broker_debts:
        leverage = calculate_leverage(summary, settings)
        console.print(
            Panel(
                "\n".join([
                    f"Principal Investment: ${leverage.principal_investment:,.2f}",
                    f"Equity: ${leverage.equity:,.2f} ({color_signed(leverage.equity_gain_loss_percent, suffix='%')})",
                    f"Debt: ${leverage.debt:,.2f}",
                    f"Leverage Ratio: {leverage.leverage_ratio:.2f}x",
                    f"Margin Utilization: {leverage.margin_usage_percent:.1f}%",
                ]),
                title=f"Leverage ({Currency.USD.value})",
            )
        )

    return 0
