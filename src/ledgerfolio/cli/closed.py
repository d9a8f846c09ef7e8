#!/usr/bin/env python3
"""Closed subcommand - Display FIFO-matched closed trades."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..currency import currency_symbol
from ..metrics import summarize_closed_trades, summarize_closed_trades_by_ticker
from .common import add_file_arguments, color_signed, load_tracker


def register_subcommand(subparsers):
    """Register the closed subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "closed",
        help="Display realized gains from closed trades",
        description="Match sales against the oldest purchase lots (FIFO) and display realized P&L.",
    )
    add_file_arguments(parser)
    parser.add_argument(
        "--ticker",
        "-t",
        default=None,
        help="Only show trades for this ticker",
    )
    parser.set_defaults(func=run)


def run(args):
    """Display closed trades and realized P&L statistics.

    Args:
        args: Parsed argparse namespace with filename, ticker and
            ignore_errors attributes.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    loaded = load_tracker(args)
    if loaded is None:
        return 1
    tracker, _, reporting_currency = loaded

    console = Console()

    fx = tracker.exchange_rate_manager
    symbol = currency_symbol(reporting_currency)
    code = reporting_currency.value

    def in_reporting(amount_usd):
        return fx.from_usd(amount_usd, reporting_currency)

    trades = tracker.closed_trades
    if args.ticker:
        trades = [t for t in trades if t.ticker == args.ticker.upper()]

    if not trades:
        console.print("[yellow]No closed trades.[/yellow]")
        return 0

    trades_table = Table(title="Closed Trades (FIFO)")
    trades_table.add_column("Closed", style="cyan")
    trades_table.add_column("Opened")
    trades_table.add_column("Ticker", style="cyan")
    trades_table.add_column("Broker")
    trades_table.add_column("Quantity", style="magenta", justify="right")
    trades_table.add_column(f"Entry → Exit ({code})", justify="right")
    trades_table.add_column(f"Realized P&L ({code})", justify="right")
    trades_table.add_column("Return", justify="right")

    for trade in trades:
        trades_table.add_row(
            trade.close_date.isoformat(),
            trade.open_date.isoformat(),
            trade.ticker,
            trade.broker,
            f"{trade.quantity:,.4f}".rstrip("0").rstrip("."),
            f"{symbol}{in_reporting(trade.entry_price_usd):,.2f} → {symbol}{in_reporting(trade.exit_price_usd):,.2f}",
            color_signed(in_reporting(trade.realized_pnl_usd), prefix=symbol),
            color_signed(trade.realized_pnl_percent, suffix="%"),
        )

    console.print(trades_table)

    by_ticker_table = Table(title="Realized P&L by Ticker")
    by_ticker_table.add_column("Ticker", style="cyan")
    by_ticker_table.add_column("Trades", justify="right")
    by_ticker_table.add_column("Win Rate", justify="right")
    by_ticker_table.add_column(f"Realized P&L ({code})", justify="right")

    for ticker, ticker_summary in sorted(summarize_closed_trades_by_ticker(trades).items()):
        by_ticker_table.add_row(
            ticker,
            str(ticker_summary.trade_count),
            f"{ticker_summary.win_rate:.1f}%",
            color_signed(in_reporting(ticker_summary.total_realized_pnl), prefix=symbol),
        )

    console.print(by_ticker_table)

    summary = summarize_closed_trades(trades)
    summary_lines = [
        f"Closed Trades: {summary.trade_count} ({summary.winning_trades} won, {summary.losing_trades} lost)",
        f"Win Rate: {summary.win_rate:.1f}%",
        f"Total Realized P&L: {color_signed(in_reporting(summary.total_realized_pnl), prefix=symbol)}",
    ]
    if summary.average_win is not None:
        summary_lines.append(f"Average Win: {color_signed(in_reporting(summary.average_win), prefix=symbol)}")
    if summary.average_loss is not None:
        summary_lines.append(f"Average Loss: {color_signed(in_reporting(summary.average_loss), prefix=symbol)}")
    if summary.best_trade is not None and summary.worst_trade is not None:
        summary_lines.append(
            f"Best: {summary.best_trade.ticker} {color_signed(in_reporting(summary.best_trade.realized_pnl_usd), prefix=symbol)}  "
            f"Worst: {summary.worst_trade.ticker} {color_signed(in_reporting(summary.worst_trade.realized_pnl_usd), prefix=symbol)}"
        )

    console.print(Panel("\n".join(summary_lines), title="Summary"))
    return 0
