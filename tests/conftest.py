import os
from datetime import timedelta
from pathlib import Path

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from candle_store import CandleSeries
from main import create_app
from settings import DEFAULT_TEMPLATE_PATH, Settings


def make_frame(rows: int = 60, start: str = "2024-01-01 00:00:00", freq: str = "1min") -> pd.DataFrame:
    """Build ascending 1-minute candles whose close climbs by 1 per row."""
    times = pd.date_range(start, periods=rows, freq=freq)
    close = pd.Series(range(rows), dtype="float64") + 100.0
    return pd.DataFrame(
        {
            "time": times,
            "open": close - 0.5,
            "high": close + 1.0,
            "low": close - 1.0,
            "close": close,
            "volume": 10.0,
        }
    )


def write_candle_csv(data_dir: Path, product_code: str, frame: pd.DataFrame) -> Path:
    path = data_dir / f"{product_code}.csv"
    frame.to_csv(path, index=False)
    return path


class FakeRepository:
    """In-memory repository that records every lookup."""

    def __init__(self, frame=None, error=None):
        self.frame = make_frame() if frame is None else frame
        self.error = error
        self.calls = []

    def get_all_candle(self, product_code: str, duration: timedelta, limit: int) -> CandleSeries:
        self.calls.append((product_code, duration, limit))
        if self.error is not None:
            raise self.error
        return CandleSeries(product_code, duration, self.frame.tail(limit).copy())


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep a developer's CANDLE_CHART_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("CANDLE_CHART_"):
            monkeypatch.delenv(name)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        config_file=tmp_path / "config.ini",
        data_dir=tmp_path,
        template_path=DEFAULT_TEMPLATE_PATH,
    )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def client(settings: Settings, repository: FakeRepository) -> TestClient:
    return TestClient(create_app(settings, repository))
