"""Rolling statistics over a single fixed-cadence series.

All windows are trailing: the statistic at row i uses rows i-w+1 .. i.
Null values (padded gaps) are skipped by every statistic; they never count
as zeros.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


def neighbor_values(values: pd.Series) -> tuple[pd.Series, pd.Series]:
    """Return (back1, front1): the previous and next row values."""
    return values.shift(1), values.shift(-1)


def neighbor_slopes(values: pd.Series, step_minutes: float) -> tuple[pd.Series, pd.Series]:
    """Return (slope_behind, slope_ahead) in value units per minute.

    slope_behind = (value[t] - value[t-1]) / step
    slope_ahead = (value[t+1] - value[t]) / step
    """
    back1, front1 = neighbor_values(values)
    return (values - back1) / step_minutes, (front1 - values) / step_minutes


def rolling_linear_fit(
    values: pd.Series,
    window: int,
    min_periods: int | None = None,
) -> tuple[pd.Series, pd.Series]:
    """Least-squares fit of value against row position over a trailing window.

    Args:
        values: Series values in row order
        window: Window length in rows
        min_periods: Minimum non-null rows for a fit (default: window // 2, at least 2)

    Returns:
        (slope, r2): slope in value units per row, r2 in [0, 1]
    """
    if min_periods is None:
        min_periods = max(2, window // 2)

    position = pd.Series(np.arange(len(values), dtype="float64"), index=values.index)
    position = position.where(values.notna())

    cov = values.rolling(window, min_periods=min_periods).cov(position)
    var_position = position.rolling(window, min_periods=min_periods).var()
    slope = cov / var_position

    r = values.rolling(window, min_periods=min_periods).corr(position)
    r2 = (r ** 2).clip(upper=1.0)
    # Flat windows have no defined correlation
    r2 = r2.replace([np.inf, -np.inf], np.nan)

    return slope, r2


def compute_trailing_stats(
    df: pd.DataFrame,
    value_col: str = "mean",
    window: int = 7,
    step_minutes: float = 15.0,
) -> pd.DataFrame:
    """Add neighbor and trailing-window statistics to one series.

    Columns added:
    - back1, front1: previous and next values
    - slope_behind, slope_ahead: neighbor slopes (per minute)
    - rolling_median, rolling_mean: over current + (window - 1) preceding rows
    - rolling_slope: least-squares slope over the window (per minute)
    - rolling_sd: standard deviation over the window

    Args:
        df: Single series sorted by timestamp
        value_col: Column holding the interval value
        window: Trailing window length in rows (default 7)
        step_minutes: Minutes between rows

    Returns:
        Copy of df with the statistic columns added
    """
    df = df.copy()
    values = df[value_col].astype("float64")

    df["back1"], df["front1"] = neighbor_values(values)
    df["slope_behind"], df["slope_ahead"] = neighbor_slopes(values, step_minutes)

    rolling = values.rolling(window, min_periods=1)
    df["rolling_median"] = rolling.median()
    df["rolling_mean"] = rolling.mean()
    df["rolling_sd"] = values.rolling(window, min_periods=2).std()

    slope, _ = rolling_linear_fit(values, window, min_periods=2)
    df["rolling_slope"] = slope / step_minutes

    return df
