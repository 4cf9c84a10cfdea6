"""Fetch and persist crypto OHLCV candles via ccxt.

This helper keeps the CSV schema in ``candle_data`` aligned with what the
candle API expects (time/open/high/low/close/volume). Files are named after
the product code (``BTC_JPY.csv``), which maps onto the ccxt symbol by
replacing the first underscore with a slash (``BTC/JPY``).

Example:
    python fetch_crypto_ohlcv.py --product-code BTC_JPY --timeframe 1m --days 2
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import ccxt  # type: ignore
import pandas as pd

from candle_store import CANDLE_COLUMNS
from settings import load_settings


@dataclass
class FetchConfig:
    product_code: str = "BTC_JPY"
    timeframe: str = "1m"
    days: int = 1
    exchange_id: str = "bitflyer"
    data_dir: Optional[Path] = None
    output_path: Optional[Path] = None

    @property
    def symbol(self) -> str:
        base, sep, quote = self.product_code.partition("_")
        if not sep or not base or not quote:
            raise ValueError(f"product code must look like BASE_QUOTE, got {self.product_code!r}")
        return f"{base}/{quote}"

    def resolved_output_path(self) -> Path:
        if self.output_path:
            return Path(self.output_path)
        data_dir = self.data_dir or load_settings().data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / f"{self.product_code}.csv"


def _instantiate_exchange(exchange_id: str) -> ccxt.Exchange:
    exchange_id = exchange_id.lower()
    if not hasattr(ccxt, exchange_id):
        raise ValueError(f"Unsupported exchange '{exchange_id}'")
    exchange_cls = getattr(ccxt, exchange_id)
    exchange: ccxt.Exchange = exchange_cls({"enableRateLimit": True})
    if not exchange.has.get("fetchOHLCV"):
        raise ValueError(f"Exchange '{exchange_id}' does not support fetchOHLCV")
    return exchange


def fetch_ohlcv_rows(cfg: FetchConfig, exchange: Optional[ccxt.Exchange] = None) -> List[Sequence[float]]:
    if exchange is None:
        exchange = _instantiate_exchange(cfg.exchange_id)
    since_ms = int(
        (datetime.now(timezone.utc) - timedelta(days=cfg.days)).timestamp() * 1000
    )
    timeframe_ms = int(exchange.parse_timeframe(cfg.timeframe) * 1000)
    rows: List[Sequence[float]] = []
    now_ms = exchange.milliseconds()

    while since_ms < now_ms:
        batch = exchange.fetch_ohlcv(
            cfg.symbol, cfg.timeframe, since_ms, limit=1000
        )
        if not batch:
            break
        rows.extend(batch)
        logging.info("Fetched %d rows for %s (total %d)", len(batch), cfg.symbol, len(rows))
        last_ts = batch[-1][0]
        next_since = last_ts + timeframe_ms
        if next_since <= since_ms:
            break
        since_ms = next_since
        if last_ts >= now_ms:
            break
    return rows


def format_candle_frame(rows: Iterable[Sequence[float]]) -> pd.DataFrame:
    columns = ["timestamp", "open", "high", "low", "close", "volume"]
    frame = pd.DataFrame(rows, columns=columns)
    if frame.empty:
        return pd.DataFrame(columns=CANDLE_COLUMNS)
    frame["time"] = (
        pd.to_datetime(frame["timestamp"], unit="ms", utc=True)
        .dt.tz_localize(None)
    )
    cleaned = (
        frame.drop(columns=["timestamp"])
        .dropna(subset=["open", "high", "low", "close"])
        .sort_values("time")
        .drop_duplicates(subset="time", keep="last")
    )
    numeric_cols = ["open", "high", "low", "close", "volume"]
    cleaned[numeric_cols] = cleaned[numeric_cols].apply(
        pd.to_numeric, errors="coerce"
    )
    return cleaned[CANDLE_COLUMNS].reset_index(drop=True)


def run(cfg: FetchConfig, exchange: Optional[ccxt.Exchange] = None) -> Path:
    rows = fetch_ohlcv_rows(cfg, exchange)
    frame = format_candle_frame(rows)
    if frame.empty:
        raise RuntimeError("No OHLCV rows fetched; check the product code/timeframe combination.")
    output_path = cfg.resolved_output_path()
    frame.to_csv(output_path, index=False)
    return output_path


def parse_args(argv: Optional[List[str]] = None) -> FetchConfig:
    parser = argparse.ArgumentParser(description="Fetch crypto OHLCV candles via ccxt.")
    parser.add_argument("--product-code", default="BTC_JPY", help="Product code, BASE_QUOTE (default: BTC_JPY)")
    parser.add_argument("--timeframe", default="1m", help="ccxt timeframe (default: 1m)")
    parser.add_argument("--days", type=int, default=1, help="Number of days of history to fetch")
    parser.add_argument("--exchange", default="bitflyer", help="ccxt exchange id (default: bitflyer)")
    parser.add_argument("--data-dir", type=Path, help="Candle directory (default: from config.ini)")
    parser.add_argument("--output", type=Path, help="Explicit output path")
    args = parser.parse_args(argv)
    return FetchConfig(
        product_code=args.product_code,
        timeframe=args.timeframe,
        days=args.days,
        exchange_id=args.exchange,
        data_dir=args.data_dir,
        output_path=args.output,
    )


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    cfg = parse_args(argv)
    output_path = run(cfg)
    logging.info("Saved %s %s candles to %s", cfg.product_code, cfg.timeframe, output_path)


if __name__ == "__main__":
    main()
