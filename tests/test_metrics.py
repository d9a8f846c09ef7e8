"""Tests for return, volatility, Sharpe ratio and drawdown calculations."""

from datetime import date
from decimal import Decimal

import numpy as np
import pytest

from ledgerfolio.metrics import (
    calculate_annualized_return,
    calculate_daily_returns,
    calculate_daily_returns_by_date,
    calculate_downside_volatility,
    calculate_drawdown_series,
    calculate_max_drawdown,
    calculate_max_drawdown_with_dates,
    calculate_risk_metrics,
    calculate_sharpe_ratio,
    calculate_volatility,
)


def test_daily_returns():
    returns = calculate_daily_returns([Decimal("100"), Decimal("110"), Decimal("99")])
    assert returns == pytest.approx([0.10, -0.10])


def test_daily_returns_zero_previous_value():
    assert calculate_daily_returns([0, 100, 110]) == pytest.approx([0.0, 0.10])


def test_daily_returns_by_date():
    values = {
        date(2024, 1, 3): Decimal("121"),
        date(2024, 1, 1): Decimal("100"),
        date(2024, 1, 2): Decimal("110"),
    }
    returns = calculate_daily_returns_by_date(values)
    assert list(returns) == [date(2024, 1, 2), date(2024, 1, 3)]
    assert returns[date(2024, 1, 3)] == pytest.approx(0.10)


def test_volatility_is_population_std_annualized():
    returns = [0.01, -0.02, 0.03, 0.0]
    daily, annual = calculate_volatility(returns)
    assert daily == pytest.approx(float(np.std(returns)))
    assert annual == pytest.approx(float(np.std(returns)) * np.sqrt(252))


def test_volatility_of_empty_returns():
    assert calculate_volatility([]) == (0.0, 0.0)


def test_downside_volatility_ignores_gains():
    daily, _ = calculate_downside_volatility([0.05, -0.01, 0.07, -0.03])
    assert daily == pytest.approx(float(np.std([-0.01, -0.03])))
    assert calculate_downside_volatility([0.01, -0.01]) == (0.0, 0.0)


def test_annualized_return():
    assert calculate_annualized_return([0.001, 0.003]) == pytest.approx(0.002 * 252)
    assert calculate_annualized_return([]) == 0.0


def test_sharpe_ratio():
    returns = [0.01, -0.005, 0.002, 0.004]
    _, annual_vol = calculate_volatility(returns)
    expected = (float(np.mean(returns)) * 252 - 0.02) / annual_vol
    assert calculate_sharpe_ratio(returns) == pytest.approx(expected)
    assert calculate_sharpe_ratio(returns, risk_free_rate=0.0) == pytest.approx(float(np.mean(returns)) * 252 / annual_vol)


def test_sharpe_ratio_zero_volatility():
    assert calculate_sharpe_ratio([0.5, 0.5, 0.5]) == 0.0


def test_max_drawdown_scenario():
    """Verify [100, 110, 90, 120] has a drawdown of (110 - 90) / 110."""
    assert calculate_max_drawdown([100, 110, 90, 120]) == pytest.approx(20 / 110)
    assert round(calculate_max_drawdown([100, 110, 90, 120]) * 100, 2) == 18.18


def test_max_drawdown_edge_cases():
    assert calculate_max_drawdown([]) == 0.0
    assert calculate_max_drawdown([100, 120, 150]) == 0.0
    assert calculate_max_drawdown([0, 0, 0]) == 0.0


def test_max_drawdown_with_dates():
    values = {
        date(2024, 1, 1): Decimal("100"),
        date(2024, 1, 2): Decimal("110"),
        date(2024, 1, 3): Decimal("90"),
        date(2024, 1, 4): Decimal("120"),
    }
    max_dd, peak, trough = calculate_max_drawdown_with_dates(values)
    assert max_dd == pytest.approx(20 / 110)
    assert peak == date(2024, 1, 2)
    assert trough == date(2024, 1, 3)


def test_drawdown_series():
    values = {
        date(2024, 1, 1): Decimal("100"),
        date(2024, 1, 2): Decimal("80"),
        date(2024, 1, 3): Decimal("120"),
    }
    series = calculate_drawdown_series(values)
    assert series[date(2024, 1, 1)] == 0.0
    assert series[date(2024, 1, 2)] == pytest.approx(0.2)
    assert series[date(2024, 1, 3)] == 0.0


def test_risk_metrics_need_two_points():
    metrics = calculate_risk_metrics([Decimal("100")])
    assert metrics.volatility == 0.0
    assert metrics.annualized_return == 0.0
    assert metrics.sharpe_ratio == 0.0
    assert metrics.max_drawdown == 0.0


def test_risk_metrics_from_dated_series():
    values = {
        date(2024, 1, 2): Decimal("110"),
        date(2024, 1, 1): Decimal("100"),
        date(2024, 1, 3): Decimal("90"),
        date(2024, 1, 4): Decimal("120"),
    }
    metrics = calculate_risk_metrics(values, risk_free_rate=0.01)

    returns = calculate_daily_returns([100, 110, 90, 120])
    assert metrics.max_drawdown == pytest.approx(20 / 110)
    assert metrics.annualized_return == pytest.approx(float(np.mean(returns)) * 252)
    assert metrics.volatility == pytest.approx(float(np.std(returns)) * np.sqrt(252))
    assert metrics.sharpe_ratio == pytest.approx(calculate_sharpe_ratio(returns, 0.01))
