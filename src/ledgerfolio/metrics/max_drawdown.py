from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Tuple


def calculate_max_drawdown(values: Sequence[float | Decimal]) -> float:
    """
    Calculate the maximum drawdown from an ordered series of portfolio values.

    Maximum drawdown measures the largest peak-to-trough decline, expressed
    as a fraction of the running peak. The peak starts at the first value.

    Args:
        values: Portfolio values, oldest first.

    Returns:
        The maximum drawdown as a positive fraction (0.20 = 20% drawdown).
        Points where the running peak is not positive contribute nothing.
    """
    if len(values) == 0:
        return 0.0

    max_drawdown = 0.0
    peak_value = float(values[0])

    for value in values:
        value = float(value)
        if value > peak_value:
            peak_value = value

        if peak_value > 0:
            drawdown = (peak_value - value) / peak_value
            if drawdown > max_drawdown:
                max_drawdown = drawdown

    return max_drawdown


def calculate_max_drawdown_with_dates(
    portfolio_values: dict[date, Decimal]
) -> Tuple[float, date | None, date | None]:
    """
    Calculate the maximum drawdown of a dated series along with when it happened.

    Args:
        portfolio_values: Dictionary mapping dates to portfolio values.

    Returns:
        Tuple of (max_drawdown, peak_date, trough_date). The dates are None
        when the series never falls below a previous peak.
    """
    sorted_dates = sorted(portfolio_values.keys())
    if not sorted_dates:
        return 0.0, None, None

    max_drawdown = 0.0
    peak_value = float(portfolio_values[sorted_dates[0]])
    current_peak_date = sorted_dates[0]
    peak_date: date | None = None
    trough_date: date | None = None

    for d in sorted_dates:
        value = float(portfolio_values[d])
        if value > peak_value:
            peak_value = value
            current_peak_date = d

        if peak_value > 0:
            drawdown = (peak_value - value) / peak_value
            if drawdown > max_drawdown:
                max_drawdown = drawdown
                peak_date = current_peak_date
                trough_date = d

    return max_drawdown, peak_date, trough_date


def calculate_drawdown_series(
    portfolio_values: dict[date, Decimal]
) -> dict[date, float]:
    """
    Calculate the drawdown at each point in time.

    Args:
        portfolio_values: Dictionary mapping dates to portfolio values.

    Returns:
        Dictionary mapping dates to drawdowns as positive fractions.
        A drawdown of 0.10 means the portfolio is 10% below its peak.
    """
    drawdowns: dict[date, float] = {}
    peak_value: float | None = None

    for d in sorted(portfolio_values.keys()):
        value = float(portfolio_values[d])
        if peak_value is None or value > peak_value:
            peak_value = value

        if peak_value > 0:
            drawdowns[d] = (peak_value - value) / peak_value
        else:
            drawdowns[d] = 0.0

    return drawdowns
