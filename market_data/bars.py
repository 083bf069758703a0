from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Any, Iterable

BAR_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class PriceBar:
    date: dt.date
    close: float
    open: float | None = None
    high: float | None = None
    low: float | None = None
    volume: float | None = None


def _num(v: Any) -> float | None:
    if v is None:
        return None
    try:
        x = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(x):
        return None
    return x


def bars_from_frame(df) -> list[PriceBar]:
    """
    Convert a date-indexed OHLCV DataFrame (lower-case columns) into sorted, de-duplicated bars.
    Rows without a positive close are dropped.
    """
    if df is None or getattr(df, "empty", True):
        return []
    by_date: dict[dt.date, PriceBar] = {}
    for idx, row in df.iterrows():
        d = idx.date() if hasattr(idx, "date") else dt.date.fromisoformat(str(idx)[:10])
        close = _num(row.get("close"))
        if close is None or close <= 0:
            continue
        by_date[d] = PriceBar(
            date=d,
            close=close,
            open=_num(row.get("open")),
            high=_num(row.get("high")),
            low=_num(row.get("low")),
            volume=_num(row.get("volume")),
        )
    return [by_date[d] for d in sorted(by_date)]


def bars_to_frame(bars: Iterable[PriceBar]):
    import pandas as pd

    records = [
        {"date": b.date.isoformat(), "open": b.open, "high": b.high, "low": b.low, "close": b.close, "volume": b.volume}
        for b in bars
    ]
    if not records:
        empty = pd.DataFrame(columns=BAR_COLUMNS)
        empty.index = pd.to_datetime([])
        empty.index.name = "date"
        return empty
    df = pd.DataFrame.from_records(records)
    df["date"] = pd.to_datetime(df["date"])
    df = df.set_index("date").sort_index()
    return df
