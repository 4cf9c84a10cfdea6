import time
from datetime import timedelta

import pandas as pd
import pytest

from candle_store import CANDLE_COLUMNS, CsvCandleRepository
from fetch_crypto_ohlcv import FetchConfig, format_candle_frame, parse_args, run

MINUTE_MS = 60_000
START_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z


class FakeExchange:
    """Serves fixed one-minute rows in pages of ``page_size``."""

    def __init__(self, rows, page_size=2):
        self.rows = rows
        self.page_size = page_size
        self.requests = []

    def parse_timeframe(self, timeframe):
        return 60

    def milliseconds(self):
        return self.rows[-1][0] + MINUTE_MS

    def fetch_ohlcv(self, symbol, timeframe, since, limit=None):
        self.requests.append((symbol, timeframe, since))
        page = [row for row in self.rows if row[0] >= since]
        return page[: self.page_size]


def make_rows(count, start_ms=START_MS):
    return [
        [start_ms + i * MINUTE_MS, 100.0 + i, 101.0 + i, 99.0 + i, 100.5 + i, 2.0]
        for i in range(count)
    ]


def test_symbol_from_product_code():
    assert FetchConfig(product_code="BTC_JPY").symbol == "BTC/JPY"
    with pytest.raises(ValueError):
        FetchConfig(product_code="BTCJPY").symbol


def test_format_candle_frame_sorts_and_dedupes():
    rows = make_rows(3)
    frame = format_candle_frame([rows[2], rows[0], rows[1], rows[0]])
    assert list(frame.columns) == CANDLE_COLUMNS
    assert frame["time"].tolist() == list(pd.date_range("2024-01-01", periods=3, freq="1min"))
    assert frame["open"].tolist() == [100.0, 101.0, 102.0]


def test_format_candle_frame_empty():
    frame = format_candle_frame([])
    assert frame.empty
    assert list(frame.columns) == CANDLE_COLUMNS


def test_run_writes_csv_readable_by_repository(tmp_path):
    recent_ms = (int(time.time() * 1000) // MINUTE_MS - 30) * MINUTE_MS
    exchange = FakeExchange(make_rows(5, start_ms=recent_ms))
    cfg = FetchConfig(product_code="BTC_JPY", days=1, data_dir=tmp_path)
    output = run(cfg, exchange)

    assert output == tmp_path / "BTC_JPY.csv"
    assert all(request[0] == "BTC/JPY" for request in exchange.requests)
    series = CsvCandleRepository(tmp_path).get_all_candle("BTC_JPY", timedelta(minutes=1), 1000)
    assert series.frame["close"].tolist() == [100.5, 101.5, 102.5, 103.5, 104.5]


def test_run_without_rows_fails(tmp_path):
    class EmptyExchange(FakeExchange):
        def fetch_ohlcv(self, symbol, timeframe, since, limit=None):
            return []

    with pytest.raises(RuntimeError):
        run(FetchConfig(data_dir=tmp_path), EmptyExchange(make_rows(1)))


def test_parse_args():
    cfg = parse_args(["--product-code", "ETH_JPY", "--timeframe", "1h", "--days", "3"])
    assert cfg == FetchConfig(product_code="ETH_JPY", timeframe="1h", days=3)
