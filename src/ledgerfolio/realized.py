from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import warnings

from .currency import Currency
from .ledger import Operation, OperationType, OversellWarning, sort_operations
from .positions import QUANTITY_EPSILON


@dataclass
class Lot:
    """An open purchase lot waiting to be matched against sales."""
    quantity: Decimal
    price_native: Decimal
    price_usd: Decimal
    currency: Currency
    open_date: date
    broker: str


@dataclass(frozen=True)
class ClosedTrade:
    """A sale matched against one purchase lot, with its realized gain/loss in USD."""
    id: str
    operation_id: str
    ticker: str
    broker: str
    open_date: date
    close_date: date
    quantity: Decimal
    entry_price_native: Decimal
    exit_price_native: Decimal
    entry_price_usd: Decimal
    exit_price_usd: Decimal
    currency: Currency
    realized_pnl_usd: Decimal
    realized_pnl_percent: Decimal


def _close_lot(op: Operation, lot: Lot, quantity: Decimal, sequence: int) -> ClosedTrade:
    entry_price_usd = lot.price_usd
    exit_price_usd = op.usd_price
    realized_pnl = (exit_price_usd - entry_price_usd) * quantity

    entry_value = entry_price_usd * quantity
    if entry_value != 0:
        realized_pnl_percent = (realized_pnl / entry_value) * 100
    else:
        realized_pnl_percent = Decimal("0")

    return ClosedTrade(
        id=f"{op.id}-{lot.open_date.isoformat()}-{sequence}",
        operation_id=op.id,
        ticker=op.ticker,
        broker=op.broker,
        open_date=lot.open_date,
        close_date=op.date,
        quantity=quantity,
        entry_price_native=lot.price_native,
        exit_price_native=op.price,
        entry_price_usd=entry_price_usd,
        exit_price_usd=exit_price_usd,
        currency=lot.currency,
        realized_pnl_usd=realized_pnl,
        realized_pnl_percent=realized_pnl_percent
    )


def _replay_lots(operations: list[Operation]) -> tuple[dict[str, deque[Lot]], list[ClosedTrade]]:
    """Run the FIFO replay, returning the lots still open and the trades closed."""
    open_lots: dict[str, deque[Lot]] = defaultdict(deque)
    closed_trades: list[ClosedTrade] = []

    for op in sort_operations(operations):
        lots = open_lots[op.ticker]

        if op.operation_type == OperationType.ADD:
            lots.append(Lot(
                quantity=op.quantity,
                price_native=op.price,
                price_usd=op.usd_price,
                currency=op.currency,
                open_date=op.date,
                broker=op.broker
            ))

        elif op.operation_type == OperationType.REMOVE:
            remaining_to_close = op.quantity
            sequence = 0

            while remaining_to_close > 0 and lots:
                lot = lots[0]

                if lot.quantity <= remaining_to_close:
                    # Close entire lot
                    closed_trades.append(_close_lot(op, lot, lot.quantity, sequence))
                    remaining_to_close -= lot.quantity
                    lots.popleft()
                else:
                    # Partially close lot
                    closed_trades.append(_close_lot(op, lot, remaining_to_close, sequence))
                    lot.quantity -= remaining_to_close
                    remaining_to_close = Decimal("0")

                sequence += 1

            if remaining_to_close > QUANTITY_EPSILON:
                warnings.warn(
                    f"Sale of {op.quantity} {op.ticker} on {op.date} has {remaining_to_close} units with no "
                    f"open lot to match; realized P&L excludes them (operation {op.id or '<unsaved>'}).",
                    OversellWarning
                )

    return open_lots, closed_trades


def match_closed_trades(operations: list[Operation]) -> list[ClosedTrade]:
    """
    Match every sale against the oldest open purchase lots of its ticker (FIFO).

    Each (sale, lot) match yields one ClosedTrade whose id is built from the
    sale's operation id, the lot's open date and the split's position within
    the sale, so repeated replays of the same ledger produce identical trades.
    Units sold beyond all open lots are not matched and raise an
    OversellWarning.

    Args:
        operations: The full operation log, in any order.

    Returns:
        Closed trades, most recent close date first.
    """
    _, closed_trades = _replay_lots(operations)
    # sorted() is stable, so same-day trades keep replay order
    return sorted(closed_trades, key=lambda t: t.close_date, reverse=True)


def remaining_lots(operations: list[Operation]) -> dict[str, list[Lot]]:
    """
    Return the purchase lots still open after FIFO matching, per ticker.

    Args:
        operations: The full operation log.

    Returns:
        Mapping of ticker to its open lots, oldest first. Tickers with no
        open lots are omitted.
    """
    with warnings.catch_warnings():
        # Oversells are reported by match_closed_trades
        warnings.simplefilter("ignore", OversellWarning)
        open_lots, _ = _replay_lots(operations)
    return {ticker: list(lots) for ticker, lots in open_lots.items() if lots}
