from collections import defaultdict
from datetime import date
from decimal import Decimal
import warnings

from .currency import Currency
from .ledger import DEFAULT_BROKER, Operation, OperationType, OversellWarning, sort_operations

# Quantities at or below this are floating-point residue, not holdings
QUANTITY_EPSILON = Decimal("0.000001")


class Position():
    """An open holding of a ticker at one broker, derived from the ledger."""

    def __init__(
        self,
        ticker: str,
        broker: str,
        quantity: Decimal,
        average_buy_price: Decimal,
        average_buy_price_usd: Decimal,
        buy_date: date,
        currency: Currency = Currency.USD
    ):
        """Initialize a Position.

        Args:
            ticker: Ticker symbol of the held asset.
            broker: Broker holding the asset.
            quantity: Number of units held.
            average_buy_price: Weighted average cost per unit in ``currency``.
            average_buy_price_usd: Weighted average cost per unit in USD.
            buy_date: Date of the oldest open lot, or the date the position
                was last reopened from zero.
            currency: Currency the asset was bought in.
        """
        self.ticker: str = ticker
        self.broker: str = broker
        self.quantity: Decimal = quantity
        self.average_buy_price: Decimal = average_buy_price
        self.average_buy_price_usd: Decimal = average_buy_price_usd
        self.buy_date: date = buy_date
        self.currency: Currency = currency

    @property
    def key(self) -> tuple[str, str]:
        return (self.ticker, self.broker)

    @property
    def cost_basis(self) -> Decimal:
        """Total cost of the position in its native currency."""
        return self.quantity * self.average_buy_price

    @property
    def cost_basis_usd(self) -> Decimal:
        """Total cost of the position in USD."""
        return self.quantity * self.average_buy_price_usd

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Position):
            return NotImplemented
        return (
            self.key == other.key
            and self.quantity == other.quantity
            and self.average_buy_price == other.average_buy_price
            and self.average_buy_price_usd == other.average_buy_price_usd
            and self.buy_date == other.buy_date
            and self.currency == other.currency
        )

    def __repr__(self):
        return (
            f"Position(ticker={self.ticker}, broker={self.broker}, quantity={self.quantity}, "
            f"average_buy_price={self.average_buy_price}, buy_date={self.buy_date})"
        )


def is_active(quantity: Decimal) -> bool:
    """Return True when a quantity is large enough to count as a holding."""
    return quantity > QUANTITY_EPSILON


def derive_positions(operations: list[Operation]) -> list[Position]:
    """
    Replay the operation log into the currently open positions.

    Operations are replayed in trade-date order (creation time breaks ties).
    Buys move the weighted average cost basis in both native and USD terms;
    sells only reduce quantity. A sale larger than the holding clamps the
    quantity to zero and emits an OversellWarning.

    The result is recomputed from scratch on every call, so edits, deletes
    and backdated inserts are always reflected consistently.

    Args:
        operations: The full operation log, in any order.

    Returns:
        Active positions (quantity above 1e-6), one per (ticker, broker),
        in the order each key first appears in the replay.
    """
    position_map: dict[tuple[str, str], Position] = {}

    for op in sort_operations(operations):
        key = (op.ticker, op.broker)

        if key not in position_map:
            # A REMOVE arriving first (malformed data) starts from zero
            position_map[key] = Position(
                ticker=op.ticker,
                broker=op.broker,
                quantity=Decimal("0"),
                average_buy_price=Decimal("0"),
                average_buy_price_usd=Decimal("0"),
                buy_date=op.date,
                currency=op.currency
            )

        position = position_map[key]

        if op.operation_type == OperationType.ADD:
            old_quantity = position.quantity
            new_quantity = old_quantity + op.quantity

            if old_quantity == 0:
                # Reopened (or first) lot: basis restarts from this buy
                position.buy_date = op.date
                position.currency = op.currency
                position.average_buy_price = op.price
                position.average_buy_price_usd = op.usd_price
            else:
                position.average_buy_price = (
                    old_quantity * position.average_buy_price + op.quantity * op.price
                ) / new_quantity
                position.average_buy_price_usd = (
                    old_quantity * position.average_buy_price_usd + op.quantity * op.usd_price
                ) / new_quantity

            position.quantity = new_quantity

        elif op.operation_type == OperationType.REMOVE:
            remaining = position.quantity - op.quantity
            if remaining < 0:
                if -remaining > QUANTITY_EPSILON:
                    warnings.warn(
                        f"Sale of {op.quantity} {op.ticker} at {op.broker} on {op.date} exceeds the "
                        f"{position.quantity} held; quantity clamped to zero (operation {op.id or '<unsaved>'}).",
                        OversellWarning
                    )
                remaining = Decimal("0")
            position.quantity = remaining

    return [position for position in position_map.values() if is_active(position.quantity)]


def get_position(operations: list[Operation], ticker: str, broker: str = DEFAULT_BROKER) -> Position | None:
    """Return the open position for a (ticker, broker) key, or None if nothing is held."""
    for position in derive_positions(operations):
        if position.key == (ticker, broker):
            return position
    return None


def available_quantity(operations: list[Operation], ticker: str, broker: str = DEFAULT_BROKER) -> Decimal:
    """
    Return the quantity currently available to sell for a (ticker, broker) key.

    Callers check this before appending a REMOVE, so that sales exceeding the
    holding are rejected upstream instead of clamped during replay.
    """
    position = get_position(operations, ticker, broker)
    return position.quantity if position is not None else Decimal("0")


def aggregate_positions_by_ticker(positions: list[Position], broker: str | None = None) -> list[Position]:
    """
    Combine per-broker positions into one position per ticker.

    Args:
        positions: Positions as returned by derive_positions.
        broker: If given, only positions held at this broker are included.
            ``None`` or ``"All"`` includes every broker.

    Returns:
        One Position per ticker with the summed quantity, quantity-weighted
        average prices and the earliest buy date. The broker of a combined
        position is the filter broker, or "All".
    """
    if broker == "All":
        broker = None

    groups: dict[str, list[Position]] = defaultdict(list)
    for position in positions:
        if broker is not None and position.broker != broker:
            continue
        groups[position.ticker].append(position)

    aggregated: list[Position] = []
    for ticker, group in groups.items():
        total_quantity = sum((p.quantity for p in group), Decimal("0"))
        total_cost = sum((p.cost_basis for p in group), Decimal("0"))
        total_cost_usd = sum((p.cost_basis_usd for p in group), Decimal("0"))

        aggregated.append(Position(
            ticker=ticker,
            broker=broker if broker is not None else "All",
            quantity=total_quantity,
            average_buy_price=total_cost / total_quantity if total_quantity > 0 else Decimal("0"),
            average_buy_price_usd=total_cost_usd / total_quantity if total_quantity > 0 else Decimal("0"),
            buy_date=min(p.buy_date for p in group),
            currency=group[0].currency
        ))

    return aggregated


def holdings_on_date(
    operations: list[Operation],
    on_date: date,
    by_broker: bool = False
) -> dict[str, Decimal] | dict[tuple[str, str], Decimal]:
    """
    Replay quantities only, up to and including ``on_date``.

    Uses the same ordering and zero-floor clamping as derive_positions but
    ignores prices, and does not warn: oversells are reported once by the
    full replay.

    Args:
        operations: The full operation log.
        on_date: Last trade date to include.
        by_broker: If True, keys are (ticker, broker); otherwise quantities
            are summed per ticker.

    Returns:
        Mapping of key to held quantity, active holdings only.
    """
    holdings: dict[tuple[str, str], Decimal] = defaultdict(Decimal)

    for op in sort_operations(operations):
        if op.date > on_date:
            break

        key = (op.ticker, op.broker)
        if op.operation_type == OperationType.ADD:
            holdings[key] += op.quantity
        elif op.operation_type == OperationType.REMOVE:
            holdings[key] = max(holdings[key] - op.quantity, Decimal("0"))

    if by_broker:
        return {key: qty for key, qty in holdings.items() if is_active(qty)}

    per_ticker: dict[str, Decimal] = defaultdict(Decimal)
    for (ticker, _), qty in holdings.items():
        per_ticker[ticker] += qty
    return {ticker: qty for ticker, qty in per_ticker.items() if is_active(qty)}
