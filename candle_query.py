"""Query-string parsing for the candle API.

Everything here is pure: it turns the raw ``?product_code=...&limit=...``
parameters into a :class:`CandleQuery`, substituting defaults instead of
rejecting bad optional values. Only a missing ``product_code`` is an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional, Tuple

__all__ = [
    "CandleQuery",
    "MissingParameter",
    "parse_candle_query",
    "resolve_duration",
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "DEFAULT_DURATION_KEY",
    "DEFAULT_PERIODS",
]

DEFAULT_LIMIT = 1000
MAX_LIMIT = 1000
DEFAULT_DURATION_KEY = "1m"
DEFAULT_PERIODS: Tuple[int, int, int] = (7, 14, 50)

# Optional sign followed by ASCII digits; no whitespace, underscores or decimals.
_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


class MissingParameter(ValueError):
    """A required query parameter was absent or empty."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class CandleQuery:
    product_code: str
    limit: int = DEFAULT_LIMIT
    duration_key: str = DEFAULT_DURATION_KEY
    sma_requested: bool = False
    sma_periods: Tuple[int, int, int] = DEFAULT_PERIODS
    ema_requested: bool = False
    ema_periods: Tuple[int, int, int] = DEFAULT_PERIODS


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if not raw or not _INTEGER_PATTERN.fullmatch(raw):
        return None
    return int(raw)


def _resolve_limit(raw: Optional[str]) -> int:
    limit = _parse_int(raw)
    if limit is None or limit < 0 or limit > MAX_LIMIT:
        return DEFAULT_LIMIT
    return limit


def _resolve_periods(params: Mapping[str, str], prefix: str) -> Tuple[int, int, int]:
    periods = []
    for index, default in enumerate(DEFAULT_PERIODS, start=1):
        period = _parse_int(params.get(f"{prefix}Period{index}"))
        if period is None or period < 0:
            period = default
        periods.append(period)
    return periods[0], periods[1], periods[2]


def parse_candle_query(params: Mapping[str, str]) -> CandleQuery:
    """Build a :class:`CandleQuery` from raw query parameters.

    Raises:
        MissingParameter: ``product_code`` is missing or empty.
    """
    product_code = params.get("product_code") or ""
    if not product_code:
        raise MissingParameter("No product_code param")

    return CandleQuery(
        product_code=product_code,
        limit=_resolve_limit(params.get("limit")),
        duration_key=params.get("duration") or DEFAULT_DURATION_KEY,
        sma_requested=bool(params.get("sma")),
        sma_periods=_resolve_periods(params, "sma"),
        ema_requested=bool(params.get("ema")),
        ema_periods=_resolve_periods(params, "ema"),
    )


def resolve_duration(key: str, durations: Mapping[str, timedelta]) -> timedelta:
    """Map a duration key onto the configured table.

    Unknown keys resolve to ``timedelta(0)``; whether that is usable is up to
    the repository.
    """
    return durations.get(key, timedelta(0))
