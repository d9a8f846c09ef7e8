from collections.abc import Sequence
from datetime import date
from decimal import Decimal

import numpy as np

from .volatility import TRADING_DAYS_PER_YEAR, calculate_volatility

DEFAULT_RISK_FREE_RATE = 0.02


def calculate_daily_returns(values: Sequence[float | Decimal]) -> list[float]:
    """
    Calculate period-over-period returns from an ordered series of values.

    Args:
        values: Portfolio values, oldest first.

    Returns:
        ``len(values) - 1`` returns as floats. A return whose previous value
        is zero is recorded as 0.
    """
    returns: list[float] = []
    for i in range(1, len(values)):
        prev_value = float(values[i - 1])
        curr_value = float(values[i])

        if prev_value == 0:
            returns.append(0.0)
        else:
            returns.append((curr_value - prev_value) / prev_value)

    return returns


def calculate_daily_returns_by_date(
    portfolio_values: dict[date, Decimal]
) -> dict[date, float]:
    """
    Calculate daily returns from a dated series of portfolio values.

    Args:
        portfolio_values: Dictionary mapping dates to portfolio values.

    Returns:
        Dictionary mapping each date (except the first) to its return.
    """
    sorted_dates = sorted(portfolio_values.keys())
    returns = calculate_daily_returns([portfolio_values[d] for d in sorted_dates])
    return dict(zip(sorted_dates[1:], returns))


def calculate_annualized_return(
    returns: Sequence[float],
    periods_in_year: int = TRADING_DAYS_PER_YEAR
) -> float:
    """Approximate the annual return as the mean daily return times periods_in_year."""
    if len(returns) == 0:
        return 0.0
    return float(np.mean(np.array(returns, dtype=float))) * periods_in_year


def calculate_sharpe_ratio(
    returns: Sequence[float],
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    periods_in_year: int = TRADING_DAYS_PER_YEAR
) -> float:
    """
    Calculate the annualized Sharpe ratio from a list of daily returns.

    Sharpe = (annualized return - risk free rate) / annualized volatility.

    Args:
        returns: Daily returns as decimals (e.g., 0.002 = 0.2%).
        risk_free_rate: Annual risk-free rate (e.g., 0.02 for 2%).
        periods_in_year: Trading periods in a year (252 for trading days).

    Returns:
        The Sharpe ratio, or 0 when volatility is zero.
    """
    _, annual_volatility = calculate_volatility(returns, periods_in_year)
    if annual_volatility == 0:
        return 0.0

    annualized_return = calculate_annualized_return(returns, periods_in_year)
    return (annualized_return - risk_free_rate) / annual_volatility
