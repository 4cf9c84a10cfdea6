from __future__ import annotations

import pandas as pd

__all__ = ["compute_ema"]


def compute_ema(close: pd.Series, period: int) -> pd.Series:
    """
    Compute the Exponential Moving Average (EMA) for the provided closing prices.

    The first defined value is the SMA of the first ``period`` closes and
    every later value uses the smoothing factor ``2 / (period + 1)``.

    Args:
        close: Series of closing prices in ascending time order.
        period: Number of buckets in the smoothing window.

    Returns:
        Pandas Series aligned with the input index, NaN where the EMA is not
        yet defined.
    """
    if close.empty:
        return pd.Series(dtype="float64")

    if period < 1 or period > len(close):
        return pd.Series(float("nan"), index=close.index, dtype="float64")

    values = close.astype("float64")
    seeded = values.iloc[period - 1 :].copy()
    seeded.iloc[0] = values.iloc[:period].mean()
    ema = seeded.ewm(span=period, adjust=False).mean()
    return ema.reindex(values.index)
