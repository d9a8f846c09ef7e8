"""Tests for position derivation: weighted-average cost basis, clamping and aggregation."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgerfolio.currency import Currency
from ledgerfolio.ledger import DEFAULT_BROKER, Operation, OperationType, OversellWarning
from ledgerfolio.positions import (
    aggregate_positions_by_ticker,
    available_quantity,
    derive_positions,
    get_position,
    holdings_on_date,
)

BASE_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _op(kind: OperationType, ticker: str, quantity: str, price: str, on: date, seq: int = 0, **kwargs) -> Operation:
    return Operation(
        operation_type=kind,
        ticker=ticker,
        quantity=Decimal(quantity),
        price=Decimal(price),
        date=on,
        created_at=BASE_TIME + timedelta(seconds=seq),
        id=f"op{seq}",
        **kwargs
    )


def _aapl_buys() -> list[Operation]:
    return [
        _op(OperationType.ADD, "AAPL", "10", "100", date(2024, 1, 1), seq=1),
        _op(OperationType.ADD, "AAPL", "5", "120", date(2024, 2, 1), seq=2),
    ]


def test_weighted_average_cost_basis():
    """Verify two buys produce a quantity-weighted average price."""
    positions = derive_positions(_aapl_buys())

    assert len(positions) == 1
    position = positions[0]
    assert position.ticker == "AAPL"
    assert position.broker == DEFAULT_BROKER
    assert position.quantity == Decimal("15")
    assert position.average_buy_price == Decimal("1600") / Decimal("15")
    assert round(position.average_buy_price, 3) == Decimal("106.667")
    assert position.average_buy_price_usd == position.average_buy_price
    assert position.buy_date == date(2024, 1, 1)
    assert position.cost_basis == Decimal("1600")


def test_sell_reduces_quantity_but_keeps_average():
    ops = _aapl_buys() + [_op(OperationType.REMOVE, "AAPL", "12", "150", date(2024, 3, 1), seq=3)]

    position = get_position(ops, "AAPL")

    assert position is not None
    assert position.quantity == Decimal("3")
    assert position.average_buy_price == Decimal("1600") / Decimal("15")


def test_zero_quantity_position_is_excluded():
    ops = [
        _op(OperationType.ADD, "MSFT", "4", "300", date(2024, 1, 1), seq=1),
        _op(OperationType.REMOVE, "MSFT", "4", "310", date(2024, 1, 2), seq=2),
    ]
    assert derive_positions(ops) == []
    assert get_position(ops, "MSFT") is None
    assert available_quantity(ops, "MSFT") == Decimal("0")


def test_dust_quantity_is_excluded():
    ops = [
        _op(OperationType.ADD, "BTC", "1", "100", date(2024, 1, 1), seq=1),
        _op(OperationType.REMOVE, "BTC", "0.9999995", "100", date(2024, 1, 2), seq=2),
    ]
    assert derive_positions(ops) == []


def test_reopened_position_restarts_cost_basis():
    ops = [
        _op(OperationType.ADD, "TSLA", "2", "200", date(2024, 1, 1), seq=1),
        _op(OperationType.REMOVE, "TSLA", "2", "250", date(2024, 1, 10), seq=2),
        _op(OperationType.ADD, "TSLA", "1", "180", date(2024, 2, 1), seq=3),
    ]

    position = get_position(ops, "TSLA")

    assert position is not None
    assert position.quantity == Decimal("1")
    assert position.average_buy_price == Decimal("180")
    assert position.buy_date == date(2024, 2, 1)


def test_oversell_clamps_to_zero_and_warns():
    ops = [
        _op(OperationType.ADD, "NVDA", "3", "400", date(2024, 1, 1), seq=1),
        _op(OperationType.REMOVE, "NVDA", "5", "500", date(2024, 1, 2), seq=2),
        _op(OperationType.ADD, "NVDA", "1", "450", date(2024, 1, 3), seq=3),
    ]

    with pytest.warns(OversellWarning, match="exceeds the 3 held"):
        positions = derive_positions(ops)

    assert len(positions) == 1
    assert positions[0].quantity == Decimal("1")
    assert positions[0].average_buy_price == Decimal("450")


def test_remove_without_prior_add_clamps():
    ops = [_op(OperationType.REMOVE, "GOOGL", "1", "100", date(2024, 1, 1), seq=1)]
    with pytest.warns(OversellWarning):
        assert derive_positions(ops) == []


def test_replay_order_independent_of_insertion_order():
    """Verify a backdated insert yields the same positions as in-order inserts."""
    in_order = [
        _op(OperationType.ADD, "AAPL", "10", "100", date(2024, 1, 1), seq=1),
        _op(OperationType.ADD, "AAPL", "5", "120", date(2024, 2, 1), seq=2),
        _op(OperationType.REMOVE, "AAPL", "12", "150", date(2024, 3, 1), seq=3),
    ]
    # The February buy is recorded last, after the March sale
    backdated = [
        in_order[0],
        in_order[2],
        _op(OperationType.ADD, "AAPL", "5", "120", date(2024, 2, 1), seq=9),
    ]

    assert derive_positions(backdated) == derive_positions(in_order)


def test_conservation_per_broker():
    ops = [
        _op(OperationType.ADD, "AAPL", "10", "100", date(2024, 1, 1), seq=1, broker="IBKR"),
        _op(OperationType.ADD, "AAPL", "7", "110", date(2024, 1, 2), seq=2, broker="Schwab"),
        _op(OperationType.REMOVE, "AAPL", "4", "120", date(2024, 1, 3), seq=3, broker="IBKR"),
        _op(OperationType.ADD, "AAPL", "1", "90", date(2024, 1, 4), seq=4, broker="IBKR"),
    ]

    quantities = {p.key: p.quantity for p in derive_positions(ops)}

    assert quantities == {("AAPL", "IBKR"): Decimal("7"), ("AAPL", "Schwab"): Decimal("7")}


def test_usd_average_uses_price_in_usd():
    ops = [
        _op(OperationType.ADD, "SAP", "1", "100", date(2024, 1, 1), seq=1,
            currency=Currency.EUR, exchange_rate_at_entry=Decimal("1.10")),
        _op(OperationType.ADD, "SAP", "1", "100", date(2024, 2, 1), seq=2,
            currency=Currency.EUR, exchange_rate_at_entry=Decimal("1.20")),
    ]

    position = derive_positions(ops)[0]

    assert position.currency == Currency.EUR
    assert position.average_buy_price == Decimal("100")
    assert position.average_buy_price_usd == Decimal("115")


def test_aggregate_positions_by_ticker():
    ops = [
        _op(OperationType.ADD, "AAPL", "10", "100", date(2024, 1, 5), seq=1, broker="IBKR"),
        _op(OperationType.ADD, "AAPL", "10", "200", date(2024, 1, 1), seq=2, broker="Schwab"),
        _op(OperationType.ADD, "MSFT", "1", "300", date(2024, 1, 1), seq=3, broker="Schwab"),
    ]
    positions = derive_positions(ops)

    combined = {p.ticker: p for p in aggregate_positions_by_ticker(positions)}
    assert combined["AAPL"].quantity == Decimal("20")
    assert combined["AAPL"].average_buy_price == Decimal("150")
    assert combined["AAPL"].buy_date == date(2024, 1, 1)
    assert combined["AAPL"].broker == "All"

    assert [p.key for p in aggregate_positions_by_ticker(positions, "All")] == [("AAPL", "All"), ("MSFT", "All")]

    ibkr = aggregate_positions_by_ticker(positions, "IBKR")
    assert [(p.ticker, p.broker, p.quantity) for p in ibkr] == [("AAPL", "IBKR", Decimal("10"))]


def test_holdings_on_date():
    ops = _aapl_buys() + [
        _op(OperationType.REMOVE, "AAPL", "12", "150", date(2024, 3, 1), seq=3),
        _op(OperationType.ADD, "MSFT", "2", "300", date(2024, 2, 15), seq=4, broker="IBKR"),
    ]

    assert holdings_on_date(ops, date(2023, 12, 31)) == {}
    assert holdings_on_date(ops, date(2024, 1, 1)) == {"AAPL": Decimal("10")}
    assert holdings_on_date(ops, date(2024, 2, 20)) == {"AAPL": Decimal("15"), "MSFT": Decimal("2")}
    assert holdings_on_date(ops, date(2024, 3, 1), by_broker=True) == {
        ("AAPL", DEFAULT_BROKER): Decimal("3"),
        ("MSFT", "IBKR"): Decimal("2"),
    }
