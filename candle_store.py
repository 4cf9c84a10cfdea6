"""Candle storage backed by per-product CSV files.

Each product code owns ``<data_dir>/<product_code>.csv`` with the columns
``time,open,high,low,close,volume``. Rows hold the finest-grained candles
available and are resampled to whatever bucket width a request asks for.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

import pandas as pd

from indicator.ema import compute_ema
from indicator.sma import compute_sma

__all__ = [
    "CandleDataError",
    "CandleSeries",
    "CandleRepository",
    "CsvCandleRepository",
    "CANDLE_COLUMNS",
]

CANDLE_COLUMNS = ["time", "open", "high", "low", "close", "volume"]
NUMERIC_COLUMNS = ["open", "high", "low", "close", "volume"]
PRODUCT_CODE_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class CandleDataError(Exception):
    """Candles for a product/duration could not be produced."""


class CandleSeries:
    """Time-ascending candles for one product and bucket width.

    Indicator columns are appended in place by :meth:`add_sma` and
    :meth:`add_ema`; each repository call returns a fresh instance, so the
    mutation never leaks across requests.
    """

    def __init__(self, product_code: str, duration: timedelta, frame: pd.DataFrame) -> None:
        self.product_code = product_code
        self.duration = duration
        self.frame = frame.reset_index(drop=True)

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def indicator_columns(self) -> List[str]:
        return [col for col in self.frame.columns if col not in CANDLE_COLUMNS]

    def add_sma(self, period: int) -> None:
        self.frame[f"sma{period}"] = compute_sma(self.frame["close"], period)

    def add_ema(self, period: int) -> None:
        self.frame[f"ema{period}"] = compute_ema(self.frame["close"], period)

    def to_records(self) -> List[Dict[str, Any]]:
        """Return JSON-ready candle dicts; undefined indicator values become ``None``."""
        if self.frame.empty:
            return []
        frame = self.frame.copy()
        frame["time"] = frame["time"].map(lambda ts: ts.isoformat())
        frame = frame.astype(object).where(frame.notna(), None)
        return frame.to_dict(orient="records")


class CandleRepository(Protocol):
    def get_all_candle(self, product_code: str, duration: timedelta, limit: int) -> CandleSeries:
        ...


def load_candle_data(csv_path: Path) -> pd.DataFrame:
    """Load and clean OHLCV rows from CSV, indexed by candle start time.

    Rows whose time or prices do not parse are dropped rather than failing
    the whole file.
    """
    data = pd.read_csv(csv_path)
    data["time"] = pd.to_datetime(data["time"], errors="coerce")
    data = data.dropna(subset=["time"]).set_index("time").sort_index()
    data[NUMERIC_COLUMNS] = data[NUMERIC_COLUMNS].apply(
        pd.to_numeric, errors="coerce"
    ).astype("float64")
    data = data[~data.index.duplicated(keep="last")]
    return data.dropna(subset=["open", "high", "low", "close"])


def resample_candle_data(data: pd.DataFrame, duration: timedelta) -> pd.DataFrame:
    """Bucket rows into ``duration``-wide candles aligned to the epoch.

    Only buckets that contain rows are built, so a long gap in the history
    costs nothing even at one-second resolution.
    """
    buckets = data.index.floor(pd.Timedelta(duration))
    aggregated = (
        data.groupby(buckets)
        .agg(
            {
                "open": "first",
                "high": "max",
                "low": "min",
                "close": "last",
                "volume": "sum",
            }
        )
        .dropna(subset=["open", "high", "low", "close"])
    )
    aggregated["volume"] = aggregated["volume"].fillna(0.0)
    return aggregated


class CsvCandleRepository:
    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)

    def csv_path(self, product_code: str) -> Path:
        if not PRODUCT_CODE_PATTERN.fullmatch(product_code):
            raise CandleDataError(f"Invalid product_code: {product_code!r}")
        return self.data_dir / f"{product_code}.csv"

    def get_all_candle(self, product_code: str, duration: timedelta, limit: int) -> CandleSeries:
        """Return the latest ``limit`` candles of ``product_code`` bucketed by ``duration``.

        Raises:
            CandleDataError: unknown product, unusable duration, or unreadable data.
        """
        if duration <= timedelta(0):
            raise CandleDataError(f"Unsupported duration for {product_code}")

        csv_path = self.csv_path(product_code)
        if not csv_path.exists():
            raise CandleDataError(f"No candle data for {product_code}")

        try:
            data = load_candle_data(csv_path)
            logging.debug("Loaded %d rows from %s", len(data), csv_path)
            working = resample_candle_data(data, duration) if not data.empty else data
            working = working.tail(limit) if limit > 0 else working.iloc[0:0]
            frame = working.rename_axis("time").reset_index()[CANDLE_COLUMNS]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CandleDataError(f"Failed to read candle data for {product_code}: {exc}") from exc
        return CandleSeries(product_code, duration, frame)
