"""
Aggregation Tests: minute bars to UTC days, days to Monday weeks.
"""

from __future__ import annotations

import pytest

from factories import accumulation_bars, make_days, utc_ts
from vdf.engines.aggregation_engine import aggregate_daily, build_weeks, week_start
from vdf.models import MinuteBar


def _bar(ts: float, o: float, c: float, v: float) -> MinuteBar:
    return MinuteBar(time=ts, open=o, high=max(o, c) + 0.05, low=min(o, c) - 0.05, close=c, volume=v)


class TestAggregateDaily:
    def test_empty(self):
        assert aggregate_daily([]) == []

    def test_classifies_buy_sell_and_unchanged(self):
        t = utc_ts("2024-03-04")
        bars = [
            _bar(t, 10.0, 10.5, 1_000),       # up -> buy
            _bar(t + 60, 10.5, 10.2, 400),    # down -> sell
            _bar(t + 120, 10.2, 10.2, 250),   # unchanged -> total only
        ]
        [day] = aggregate_daily(bars)
        assert day.date == "2024-03-04"
        assert day.buy_volume == 1_000
        assert day.sell_volume == 400
        assert day.total_volume == 1_650
        assert day.delta == 600
        assert day.open == 10.0
        assert day.close == 10.2
        assert day.high == pytest.approx(10.55)
        assert day.low == pytest.approx(9.95)

    def test_groups_by_utc_date_ascending(self):
        late = utc_ts("2024-03-05", hour=23, minute=59)
        early = utc_ts("2024-03-06", hour=0, minute=0)
        bars = [_bar(late, 1, 2, 10), _bar(early, 2, 1, 20)]
        days = aggregate_daily(bars)
        assert [d.date for d in days] == ["2024-03-05", "2024-03-06"]
        assert days[0].delta == 10
        assert days[1].delta == -20

    def test_volume_and_delta_exact(self):
        bars = accumulation_bars(12)
        days = aggregate_daily(bars)
        assert len(days) == 12
        assert sum(d.total_volume for d in days) == sum(b.volume for b in bars)
        for d in days:
            assert d.delta == d.buy_volume - d.sell_volume

    def test_fractional_timestamps_floor(self):
        t = utc_ts("2024-03-04", hour=23, minute=59) + 59.9
        [day] = aggregate_daily([_bar(t, 1, 2, 5)])
        assert day.date == "2024-03-04"


class TestWeeks:
    @pytest.mark.parametrize("day,expected", [
        ("2024-01-01", "2024-01-01"),  # Monday
        ("2024-01-05", "2024-01-01"),  # Friday
        ("2024-01-07", "2024-01-01"),  # Sunday
        ("2024-01-08", "2024-01-08"),
        ("2024-03-01", "2024-02-26"),  # across month end
    ])
    def test_week_start(self, day, expected):
        assert week_start(day) == expected

    def test_build_weeks(self):
        days = make_days([100.0] * 7, [1_000, 2_000, -500, 0, 0, 4_000, -1_000])
        weeks = build_weeks(days)
        assert [w.week_start for w in weeks] == ["2024-01-01", "2024-01-08"]
        assert [w.n_days for w in weeks] == [5, 2]
        assert weeks[0].delta == pytest.approx(2_500)
        assert weeks[1].delta == pytest.approx(3_000)
        assert weeks[0].total_volume == 500_000
        assert weeks[0].delta_pct == pytest.approx(0.5)

    def test_zero_volume_week(self):
        days = make_days([100.0, 100.0], [0.0, 0.0], volumes=[0.0, 0.0])
        [week] = build_weeks(days)
        assert week.delta_pct == 0.0
