from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from .currency import Currency, ExchangeRateManager
from .ledger import Operation
from .marketdata import UNKNOWN_SECTOR, HistoryPoint, MarketData
from .positions import Position, aggregate_positions_by_ticker, holdings_on_date
from .settings import Settings


@dataclass
class AssetValuation:
    """A position aggregated across brokers and valued at current market prices.

    Exactly one of three states applies:
        - loaded: priced from market data, converted to USD.
        - unknown (``is_unknown``): the symbol did not resolve; valued at 0
          so the whole cost basis shows as a loss.
        - pending (``is_pending``): market data has not arrived yet; valued
          at cost so no P&L is shown.
    """
    ticker: str
    quantity: Decimal
    currency: Currency
    average_buy_price: Decimal
    average_buy_price_usd: Decimal
    buy_date: date
    current_price: Decimal
    current_price_usd: Decimal
    market_value_usd: Decimal
    cost_basis_usd: Decimal
    gain_loss_usd: Decimal
    gain_loss_percent: Decimal
    change_percent: Decimal = Decimal("0")
    sector: str = UNKNOWN_SECTOR
    history: list[HistoryPoint] = field(default_factory=list)
    is_unknown: bool = False
    is_pending: bool = False

    @property
    def is_loaded(self) -> bool:
        return not self.is_unknown and not self.is_pending


@dataclass
class PortfolioSummary:
    """Portfolio-level totals in USD."""
    total_value: Decimal
    total_cost: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    daily_change_value: Decimal
    daily_change_percent: Decimal


@dataclass
class AllocationSlice:
    """One slice of an allocation breakdown; weight is a fraction of the total."""
    name: str
    value: Decimal
    weight: Decimal


@dataclass
class LeverageSummary:
    """Leverage and margin figures for a portfolio bought partly on borrowed money."""
    principal_investment: Decimal
    debt: Decimal
    equity: Decimal
    leverage_ratio: Decimal
    margin_usage_percent: Decimal
    equity_gain_loss: Decimal
    equity_gain_loss_percent: Decimal


def value_assets(
    positions: list[Position],
    market_data: Mapping[str, MarketData | None],
    exchange_rate_manager: ExchangeRateManager,
    broker: str | None = None
) -> list[AssetValuation]:
    """
    Value positions per ticker against the latest market data.

    Positions are first aggregated across brokers (or filtered to one
    broker). A ticker mapped to None in ``market_data`` is unknown; a ticker
    missing from it is pending.

    Args:
        positions: Positions as returned by derive_positions.
        market_data: Latest quote per ticker.
        exchange_rate_manager: Used to convert quote prices to USD.
        broker: Restrict to positions held at this broker. None or "All"
            values every broker.

    Returns:
        One AssetValuation per held ticker.
    """
    assets: list[AssetValuation] = []

    for position in aggregate_positions_by_ticker(positions, broker):
        cost_basis_usd = position.cost_basis_usd

        if position.ticker not in market_data:
            assets.append(AssetValuation(
                ticker=position.ticker,
                quantity=position.quantity,
                currency=position.currency,
                average_buy_price=position.average_buy_price,
                average_buy_price_usd=position.average_buy_price_usd,
                buy_date=position.buy_date,
                current_price=position.average_buy_price,
                current_price_usd=position.average_buy_price_usd,
                market_value_usd=cost_basis_usd,
                cost_basis_usd=cost_basis_usd,
                gain_loss_usd=Decimal("0"),
                gain_loss_percent=Decimal("0"),
                is_pending=True
            ))
            continue

        data = market_data[position.ticker]

        if data is None:
            assets.append(AssetValuation(
                ticker=position.ticker,
                quantity=position.quantity,
                currency=position.currency,
                average_buy_price=position.average_buy_price,
                average_buy_price_usd=position.average_buy_price_usd,
                buy_date=position.buy_date,
                current_price=Decimal("0"),
                current_price_usd=Decimal("0"),
                market_value_usd=Decimal("0"),
                cost_basis_usd=cost_basis_usd,
                gain_loss_usd=-cost_basis_usd,
                gain_loss_percent=Decimal("-100"),
                is_unknown=True
            ))
            continue

        current_price_usd = exchange_rate_manager.to_usd(data.price, data.currency)
        market_value_usd = current_price_usd * position.quantity
        gain_loss_usd = market_value_usd - cost_basis_usd
        if cost_basis_usd > 0:
            gain_loss_percent = gain_loss_usd / cost_basis_usd * 100
        else:
            gain_loss_percent = Decimal("0")

        assets.append(AssetValuation(
            ticker=position.ticker,
            quantity=position.quantity,
            currency=position.currency,
            average_buy_price=position.average_buy_price,
            average_buy_price_usd=position.average_buy_price_usd,
            buy_date=position.buy_date,
            current_price=data.price,
            current_price_usd=current_price_usd,
            market_value_usd=market_value_usd,
            cost_basis_usd=cost_basis_usd,
            gain_loss_usd=gain_loss_usd,
            gain_loss_percent=gain_loss_percent,
            change_percent=data.change_percent,
            sector=data.sector,
            history=list(data.history)
        ))

    return assets


def summarize_portfolio(assets: list[AssetValuation]) -> PortfolioSummary:
    """
    Total up valued assets.

    The daily change of each loaded asset is reconstructed from its previous
    close, ``current_price_usd / (1 + change_percent / 100)``. Unknown and
    pending assets contribute no daily change.

    Args:
        assets: Valuations as returned by value_assets.

    Returns:
        PortfolioSummary. Percentages are 0 when their denominator is 0.
    """
    total_value = sum((a.market_value_usd for a in assets), Decimal("0"))
    total_cost = sum((a.cost_basis_usd for a in assets), Decimal("0"))
    total_gain_loss = total_value - total_cost
    total_gain_loss_percent = total_gain_loss / total_cost * 100 if total_cost > 0 else Decimal("0")

    daily_change_value = Decimal("0")
    for asset in assets:
        if not asset.is_loaded:
            continue
        growth = 1 + asset.change_percent / 100
        if growth == 0:
            continue
        previous_price_usd = asset.current_price_usd / growth
        daily_change_value += (asset.current_price_usd - previous_price_usd) * asset.quantity

    daily_change_percent = daily_change_value / total_value * 100 if total_value > 0 else Decimal("0")

    return PortfolioSummary(
        total_value=total_value,
        total_cost=total_cost,
        total_gain_loss=total_gain_loss,
        total_gain_loss_percent=total_gain_loss_percent,
        daily_change_value=daily_change_value,
        daily_change_percent=daily_change_percent
    )


def _allocation(values: dict[str, Decimal]) -> list[AllocationSlice]:
    total = sum(values.values(), Decimal("0"))
    slices = [
        AllocationSlice(name=name, value=value, weight=value / total if total > 0 else Decimal("0"))
        for name, value in values.items()
    ]
    return sorted(slices, key=lambda s: s.value, reverse=True)


def calculate_allocation(assets: list[AssetValuation]) -> list[AllocationSlice]:
    """Market value per ticker, largest first."""
    values: dict[str, Decimal] = defaultdict(Decimal)
    for asset in assets:
        values[asset.ticker] += asset.market_value_usd
    return _allocation(values)


def calculate_sector_allocation(assets: list[AssetValuation]) -> list[AllocationSlice]:
    """Market value per sector, largest first."""
    values: dict[str, Decimal] = defaultdict(Decimal)
    for asset in assets:
        values[asset.sector] += asset.market_value_usd
    return _allocation(values)


def calculate_portfolio_value_series(
    operations: list[Operation],
    market_data: Mapping[str, MarketData | None],
    exchange_rate_manager: ExchangeRateManager
) -> dict[date, Decimal]:
    """
    Calculate the USD value of the holdings on every date with price history.

    For each date in the union of all history dates, holdings are replayed
    up to that date and each ticker is valued at its latest close on or
    before the date, converted to USD at the ticker's current rate. Tickers
    without a quote or without an earlier close contribute nothing.

    Args:
        operations: The full operation log.
        market_data: Latest quote per ticker, including its daily history.
        exchange_rate_manager: Used to convert closes to USD.

    Returns:
        Dictionary mapping dates (ascending) to total value. Dates where
        the total is zero are omitted.
    """
    quotes = {ticker: data for ticker, data in market_data.items() if data is not None}

    all_dates: set[date] = set()
    for data in quotes.values():
        all_dates.update(point.date for point in data.history)

    usd_rates = {
        ticker: exchange_rate_manager.get_exchange_rate(data.currency, Currency.USD)
        for ticker, data in quotes.items()
    }

    result: dict[date, Decimal] = {}
    for current_date in sorted(all_dates):
        holdings = holdings_on_date(operations, current_date)

        total_value = Decimal("0")
        for ticker, quantity in holdings.items():
            data = quotes.get(ticker)
            if data is None:
                continue
            close = data.close_on_or_before(current_date)
            if close is None:
                continue
            total_value += quantity * close * usd_rates[ticker]

        if total_value != 0:
            result[current_date] = total_value

    return result


def calculate_leverage(summary: PortfolioSummary, settings: Settings) -> LeverageSummary:
    """
    Calculate leverage from portfolio totals and the user's own capital.

    Cost basis above the principal investment is treated as borrowed, and
    any per-broker debt recorded in settings is added on top.

    Args:
        summary: Portfolio totals.
        settings: Provides the principal investment and broker debts.

    Returns:
        LeverageSummary. The leverage ratio is 0 when equity is not positive.
    """
    principal = settings.principal_investment
    debt = max(Decimal("0"), summary.total_cost - principal) + settings.total_broker_debt
    equity = summary.total_value - debt

    leverage_ratio = summary.total_value / equity if equity > 0 else Decimal("0")
    margin_usage_percent = debt / summary.total_cost * 100 if summary.total_cost > 0 else Decimal("0")

    equity_gain_loss = equity - principal
    equity_gain_loss_percent = equity_gain_loss / principal * 100 if principal > 0 else Decimal("0")

    return LeverageSummary(
        principal_investment=principal,
        debt=debt,
        equity=equity,
        leverage_ratio=leverage_ratio,
        margin_usage_percent=margin_usage_percent,
        equity_gain_loss=equity_gain_loss,
        equity_gain_loss_percent=equity_gain_loss_percent
    )
