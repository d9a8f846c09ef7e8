from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from ..realized import ClosedTrade


@dataclass
class RealizedSummary:
    """Aggregate statistics over a set of closed trades."""
    trade_count: int
    total_realized_pnl: Decimal
    winning_trades: int
    losing_trades: int
    win_rate: float
    best_trade: ClosedTrade | None
    worst_trade: ClosedTrade | None
    average_win: Decimal | None
    average_loss: Decimal | None


def summarize_closed_trades(trades: list[ClosedTrade]) -> RealizedSummary:
    """
    Summarize realized performance across closed trades.

    A winning trade has a positive realized P&L in USD, a losing trade a
    negative one. Break-even trades count toward the total only.

    Args:
        trades: Closed trades, as returned by match_closed_trades.

    Returns:
        RealizedSummary with win_rate expressed as a percentage (0-100).
    """
    if not trades:
        return RealizedSummary(
            trade_count=0,
            total_realized_pnl=Decimal("0"),
            winning_trades=0,
            losing_trades=0,
            win_rate=0.0,
            best_trade=None,
            worst_trade=None,
            average_win=None,
            average_loss=None
        )

    winning = [t for t in trades if t.realized_pnl_usd > 0]
    losing = [t for t in trades if t.realized_pnl_usd < 0]

    total_realized_pnl = sum((t.realized_pnl_usd for t in trades), Decimal("0"))

    average_win = (
        sum((t.realized_pnl_usd for t in winning), Decimal("0")) / len(winning)
        if winning else None
    )
    average_loss = (
        sum((t.realized_pnl_usd for t in losing), Decimal("0")) / len(losing)
        if losing else None
    )

    return RealizedSummary(
        trade_count=len(trades),
        total_realized_pnl=total_realized_pnl,
        winning_trades=len(winning),
        losing_trades=len(losing),
        win_rate=len(winning) / len(trades) * 100,
        best_trade=max(trades, key=lambda t: t.realized_pnl_usd),
        worst_trade=min(trades, key=lambda t: t.realized_pnl_usd),
        average_win=average_win,
        average_loss=average_loss
    )


def summarize_closed_trades_by_ticker(trades: list[ClosedTrade]) -> dict[str, RealizedSummary]:
    """Summarize closed trades separately for each ticker."""
    by_ticker: dict[str, list[ClosedTrade]] = defaultdict(list)
    for trade in trades:
        by_ticker[trade.ticker].append(trade)

    return {ticker: summarize_closed_trades(ticker_trades) for ticker, ticker_trades in by_ticker.items()}
