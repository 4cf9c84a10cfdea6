from __future__ import annotations

import pandas as pd

__all__ = ["compute_sma"]


def compute_sma(close: pd.Series, period: int) -> pd.Series:
    """
    Compute the Simple Moving Average (SMA) for the provided closing prices.

    Args:
        close: Series of closing prices in ascending time order.
        period: Number of buckets in the averaging window.

    Returns:
        Pandas Series aligned with the input index. The first ``period - 1``
        values are NaN, and the whole series is NaN when ``period`` is not
        positive or exceeds the available history.
    """
    if close.empty:
        return pd.Series(dtype="float64")

    if period < 1 or period > len(close):
        return pd.Series(float("nan"), index=close.index, dtype="float64")

    return close.astype("float64").rolling(window=period, min_periods=period).mean()
