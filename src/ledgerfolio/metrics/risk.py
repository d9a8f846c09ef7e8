from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .max_drawdown import calculate_max_drawdown
from .sharpe import (
    DEFAULT_RISK_FREE_RATE,
    calculate_annualized_return,
    calculate_daily_returns,
    calculate_sharpe_ratio,
)
from .volatility import calculate_volatility


@dataclass
class RiskMetrics:
    """Headline risk statistics of a portfolio value series."""
    volatility: float
    annualized_return: float
    sharpe_ratio: float
    max_drawdown: float


def calculate_risk_metrics(
    values: Sequence[float | Decimal] | dict[date, Decimal],
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
) -> RiskMetrics:
    """
    Compute volatility, annualized return, Sharpe ratio and max drawdown.

    Args:
        values: Portfolio values oldest first, or a dictionary mapping dates
            to values (as returned by calculate_portfolio_value_series).
        risk_free_rate: Annual risk-free rate used for the Sharpe ratio.

    Returns:
        RiskMetrics. All fields are 0 when fewer than two values are given.
    """
    if isinstance(values, dict):
        values = [values[d] for d in sorted(values.keys())]

    if len(values) < 2:
        return RiskMetrics(volatility=0.0, annualized_return=0.0, sharpe_ratio=0.0, max_drawdown=0.0)

    returns = calculate_daily_returns(values)
    _, annual_volatility = calculate_volatility(returns)

    return RiskMetrics(
        volatility=annual_volatility,
        annualized_return=calculate_annualized_return(returns),
        sharpe_ratio=calculate_sharpe_ratio(returns, risk_free_rate),
        max_drawdown=calculate_max_drawdown(values)
    )
