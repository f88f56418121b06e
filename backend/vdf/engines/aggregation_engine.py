"""
VDF Aggregation Engine

Collapses 1-minute bars into UTC calendar-day buckets of classified volume,
then groups days into Monday-start weeks.

Classification per minute bar:
  close > open  -> volume is "buy"
  close < open  -> volume is "sell"
  close == open -> counted in total volume only

Pure domain logic, no I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

import numpy as np
import pandas as pd

from vdf.models import DailyAggregate, MinuteBar, WeeklyAggregate


def aggregate_daily(bars: Sequence[MinuteBar]) -> list[DailyAggregate]:
    """Group minute bars by UTC date.

    Open is the first bar's open and close the last bar's close in input
    order, so callers should pass bars sorted by time.

    Returns:
        One DailyAggregate per date with at least one bar, ascending by date.
    """
    if not bars:
        return []

    df = _bars_to_dataframe(bars)
    seconds = np.floor(df["time"].to_numpy(dtype=np.float64)).astype(np.int64)
    df["date"] = pd.to_datetime(seconds, unit="s", utc=True).strftime("%Y-%m-%d")
    df["buy"] = df["volume"].where(df["close"] > df["open"], 0.0)
    df["sell"] = df["volume"].where(df["close"] < df["open"], 0.0)

    grouped = df.groupby("date", sort=True).agg(
        buy_volume=("buy", "sum"),
        sell_volume=("sell", "sum"),
        total_volume=("volume", "sum"),
        open=("open", "first"),
        close=("close", "last"),
        high=("high", "max"),
        low=("low", "min"),
    )

    daily = []
    for date, row in grouped.iterrows():
        buy = float(row["buy_volume"])
        sell = float(row["sell_volume"])
        daily.append(
            DailyAggregate(
                date=str(date),
                buy_volume=buy,
                sell_volume=sell,
                total_volume=float(row["total_volume"]),
                delta=buy - sell,
                open=float(row["open"]),
                close=float(row["close"]),
                high=float(row["high"]),
                low=float(row["low"]),
            )
        )
    return daily


def week_start(date: str) -> str:
    """Monday of the week containing ``date`` (YYYY-MM-DD).

    Evaluated at 12:00 UTC so the weekday never shifts across a day boundary.

    >>> week_start("2024-01-07")
    '2024-01-01'
    """
    noon = datetime.fromisoformat(f"{date}T12:00:00+00:00")
    return (noon - timedelta(days=noon.weekday())).strftime("%Y-%m-%d")


def build_weeks(daily: Sequence[DailyAggregate]) -> list[WeeklyAggregate]:
    """Group daily aggregates into Monday-start weeks, ascending by week."""
    buckets: dict[str, list[DailyAggregate]] = {}
    for day in daily:
        buckets.setdefault(week_start(day.date), []).append(day)

    weeks = []
    for key in sorted(buckets):
        days = buckets[key]
        buy = sum(d.buy_volume for d in days)
        sell = sum(d.sell_volume for d in days)
        total = sum(d.total_volume for d in days)
        weeks.append(
            WeeklyAggregate(
                week_start=key,
                delta=buy - sell,
                total_volume=total,
                delta_pct=(buy - sell) / total * 100 if total > 0 else 0.0,
                n_days=len(days),
            )
        )
    return weeks


def _bars_to_dataframe(bars: Sequence[MinuteBar]) -> pd.DataFrame:
    """Convert minute bars to a DataFrame, preserving input order."""
    data = {
        "time": [b.time for b in bars],
        "open": [b.open for b in bars],
        "high": [b.high for b in bars],
        "low": [b.low for b in bars],
        "close": [b.close for b in bars],
        "volume": [float(b.volume) for b in bars],
    }
    return pd.DataFrame(data)
