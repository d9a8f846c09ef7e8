from collections.abc import Sequence
from typing import Tuple

import numpy as np

TRADING_DAYS_PER_YEAR = 252


def calculate_volatility(
    returns: Sequence[float],
    periods_in_year: int = TRADING_DAYS_PER_YEAR
) -> Tuple[float, float]:
    """
    Calculate daily and annualized volatility from a list of returns.

    Volatility is the population standard deviation of returns, annualized
    by the square root of periods_in_year.

    Args:
        returns: List of daily returns as decimals (e.g., 0.002 = 0.2%).
        periods_in_year: Trading periods in a year (252 for trading days).

    Returns:
        Tuple of (daily_volatility, annual_volatility). Both are 0 when
        there are no returns.
    """
    if len(returns) == 0:
        return 0.0, 0.0

    returns_array = np.array(returns, dtype=float)
    daily_volatility = float(returns_array.std())
    annual_volatility = daily_volatility * float(np.sqrt(periods_in_year))

    return daily_volatility, annual_volatility


def calculate_downside_volatility(
    returns: Sequence[float],
    periods_in_year: int = TRADING_DAYS_PER_YEAR
) -> Tuple[float, float]:
    """
    Calculate volatility of negative returns only.

    Args:
        returns: List of daily returns.
        periods_in_year: Trading periods in a year.

    Returns:
        Tuple of (daily_downside_volatility, annual_downside_volatility).
        Both are 0 when there are fewer than two negative returns.
    """
    negative_returns = [r for r in returns if r < 0]
    if len(negative_returns) < 2:
        return 0.0, 0.0
    return calculate_volatility(negative_returns, periods_in_year)
