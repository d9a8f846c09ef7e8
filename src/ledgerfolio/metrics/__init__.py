"""Portfolio risk and performance metrics.

Provides functions for calculating daily returns, volatility, annualized
return, Sharpe ratio and maximum drawdown over portfolio value series,
plus win-rate summaries over FIFO-matched closed trades.
"""

from .max_drawdown import (
    calculate_drawdown_series,
    calculate_max_drawdown,
    calculate_max_drawdown_with_dates,
)
from .risk import (
    RiskMetrics,
    calculate_risk_metrics,
)
from .sharpe import (
    DEFAULT_RISK_FREE_RATE,
    calculate_annualized_return,
    calculate_daily_returns,
    calculate_daily_returns_by_date,
    calculate_sharpe_ratio,
)
from .volatility import (
    TRADING_DAYS_PER_YEAR,
    calculate_downside_volatility,
    calculate_volatility,
)
from .win_rate import (
    RealizedSummary,
    summarize_closed_trades,
    summarize_closed_trades_by_ticker,
)

__all__ = [
    # Max drawdown functions
    "calculate_drawdown_series",
    "calculate_max_drawdown",
    "calculate_max_drawdown_with_dates",
    # Combined risk metrics
    "RiskMetrics",
    "calculate_risk_metrics",
    # Return and Sharpe ratio functions
    "DEFAULT_RISK_FREE_RATE",
    "calculate_annualized_return",
    "calculate_daily_returns",
    "calculate_daily_returns_by_date",
    "calculate_sharpe_ratio",
    # Volatility functions
    "TRADING_DAYS_PER_YEAR",
    "calculate_downside_volatility",
    "calculate_volatility",
    # Win rate functions
    "RealizedSummary",
    "summarize_closed_trades",
    "summarize_closed_trades_by_ticker",
]
