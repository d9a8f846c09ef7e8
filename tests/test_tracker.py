"""Tests for event-driven recomputation of portfolio state from a ledger store."""

from datetime import date
from decimal import Decimal

import pytest

from ledgerfolio.config import Config
from ledgerfolio.currency import Currency, FixedExchangeRateManager
from ledgerfolio.ledger import InMemoryLedgerStore, Operation, OperationType
from ledgerfolio.marketdata import FixedMarketDataProvider, HistoryPoint, MarketData
from ledgerfolio.settings import InMemorySettingsStore, Settings
from ledgerfolio.tracker import PortfolioTracker, derive_state


def _buy(ticker: str, quantity: str, price: str, on: date) -> Operation:
    return Operation(OperationType.ADD, ticker, Decimal(quantity), Decimal(price), on)


def _sell(ticker: str, quantity: str, price: str, on: date) -> Operation:
    return Operation(OperationType.REMOVE, ticker, Decimal(quantity), Decimal(price), on)


def _tracker(store: InMemoryLedgerStore, quotes: dict[str, MarketData | None] | None = None, **kwargs) -> PortfolioTracker:
    return PortfolioTracker(
        store,
        market_data_provider=FixedMarketDataProvider(quotes or {}),
        exchange_rate_manager=FixedExchangeRateManager(),
        config=Config(batch_delay=0),
        **kwargs
    )


def test_derive_state_is_pure():
    ops = [
        Operation(OperationType.ADD, "AAPL", Decimal("10"), Decimal("100"), date(2024, 1, 1), id="a"),
        Operation(OperationType.REMOVE, "AAPL", Decimal("4"), Decimal("110"), date(2024, 2, 1), id="b"),
    ]

    first = derive_state(ops)
    second = derive_state(ops)

    assert first == second
    assert first.positions[0].quantity == Decimal("6")
    assert [t.id for t in first.closed_trades] == ["b-2024-01-01-0"]


def test_tracker_recomputes_on_every_change():
    store = InMemoryLedgerStore()
    tracker = _tracker(store)
    assert tracker.positions == []

    buy_id = store.append(_buy("AAPL", "10", "100", date(2024, 1, 1)))
    assert tracker.positions[0].quantity == Decimal("10")

    sell_id = store.append(_sell("AAPL", "4", "150", date(2024, 3, 1)))
    assert tracker.positions[0].quantity == Decimal("6")
    assert tracker.closed_trades[0].realized_pnl_usd == Decimal("200")

    store.update(sell_id, quantity=Decimal("10"))
    assert tracker.positions == []
    assert tracker.closed_trades[0].realized_pnl_usd == Decimal("500")

    store.delete(sell_id)
    assert tracker.positions[0].quantity == Decimal("10")
    assert tracker.closed_trades == []

    # A backdated buy replays before the existing one
    store.append(_buy("AAPL", "5", "80", date(2023, 12, 1)))
    assert tracker.positions[0].buy_date == date(2023, 12, 1)
    assert tracker.positions[0].quantity == Decimal("15")

    tracker.close()
    store.delete(buy_id)
    assert tracker.positions[0].quantity == Decimal("15")


def test_tracker_valuation_with_market_data():
    store = InMemoryLedgerStore([
        _buy("AAPL", "10", "100", date(2024, 1, 1)),
        _buy("ZZZZ", "1", "50", date(2024, 1, 1)),
        _buy("MSFT", "1", "300", date(2024, 1, 1)),
    ])
    quotes = {
        "AAPL": MarketData(symbol="AAPL", price=Decimal("150"), change_percent=Decimal("0")),
        "ZZZZ": None,
    }
    tracker = _tracker(store, quotes)

    # Nothing fetched yet: everything is pending at cost
    assert all(a.is_pending for a in tracker.valuation())

    fetched = tracker.refresh_market_data()

    assert set(fetched) == {"AAPL", "ZZZZ", "MSFT"}
    assets = {a.ticker: a for a in tracker.valuation()}
    assert assets["AAPL"].market_value_usd == Decimal("1500")
    assert assets["ZZZZ"].is_unknown
    assert assets["ZZZZ"].gain_loss_percent == Decimal("-100")
    # FixedMarketDataProvider resolves unlisted symbols to None
    assert assets["MSFT"].is_unknown

    summary = tracker.summary()
    assert summary.total_value == Decimal("1500")
    assert summary.total_cost == Decimal("1350")


def test_tracker_refresh_merges_quotes():
    store = InMemoryLedgerStore([_buy("AAPL", "1", "100", date(2024, 1, 1))])
    provider = FixedMarketDataProvider({"AAPL": MarketData(symbol="AAPL", price=Decimal("110"))})
    tracker = PortfolioTracker(
        store,
        market_data_provider=provider,
        exchange_rate_manager=FixedExchangeRateManager(),
        config=Config(batch_delay=0, market_data_ttl=0),
    )

    tracker.refresh_market_data()
    provider.quotes["AAPL"] = MarketData(symbol="AAPL", price=Decimal("120"))
    tracker.refresh_market_data(["AAPL"])

    assert tracker.market_data["AAPL"] is not None
    assert tracker.market_data["AAPL"].price == Decimal("120")


def test_tracker_risk_metrics_and_leverage():
    store = InMemoryLedgerStore([_buy("AAPL", "10", "100", date(2024, 1, 1))])
    quotes = {
        "AAPL": MarketData(
            symbol="AAPL",
            price=Decimal("120"),
            currency=Currency.USD,
            history=[
                HistoryPoint(date(2024, 1, 2), Decimal("100")),
                HistoryPoint(date(2024, 1, 3), Decimal("110")),
                HistoryPoint(date(2024, 1, 4), Decimal("90")),
                HistoryPoint(date(2024, 1, 5), Decimal("120")),
            ],
        ),
    }
    settings_store = InMemorySettingsStore(Settings(principal_investment=Decimal("500")))
    tracker = _tracker(store, quotes, settings_store=settings_store)
    tracker.refresh_market_data()

    assert list(tracker.value_series().values()) == [Decimal("1000"), Decimal("1100"), Decimal("900"), Decimal("1200")]
    assert tracker.risk_metrics().max_drawdown == pytest.approx(20 / 110)

    leverage = tracker.leverage()
    assert leverage.debt == Decimal("500")
    assert leverage.equity == Decimal("700")


def test_tracker_seeds_settings_from_config():
    tracker = PortfolioTracker(
        InMemoryLedgerStore(),
        market_data_provider=FixedMarketDataProvider(),
        exchange_rate_manager=FixedExchangeRateManager(),
        config=Config(principal_investment=Decimal("2500")),
    )
    assert tracker.settings_store.get().principal_investment == Decimal("2500")
