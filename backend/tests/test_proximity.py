"""
Proximity Tests: breakout precursor signals, composite level, rally suppression.
"""

from __future__ import annotations

import pytest

from factories import make_days, make_zone
from vdf.engines.proximity_engine import evaluate_proximity, level_for
from vdf.models import ProximityLevel


def _zones():
    return [
        make_zone(0, 9, score=0.65, start_date="2024-01-01", end_date="2024-01-12", absorption_pct=45.0, rank=1),
        make_zone(15, 24, score=0.55, start_date="2024-01-22", end_date="2024-02-02", absorption_pct=20.0, rank=2),
    ]


def _anomaly_deltas(n: int = 30, at: int = 25, value: float = 10_000.0) -> list[float]:
    deltas = [1_000.0] * n
    deltas[at] = value
    return deltas


class TestProximityPreconditions:
    def test_no_zones(self):
        days = make_days([100.0] * 30, [1_000.0] * 30)
        result = evaluate_proximity(days, [])
        assert result.composite_score == 0
        assert result.level == ProximityLevel.NONE
        assert result.signals == []

    def test_weak_zones(self):
        days = make_days([100.0] * 30, [1_000.0] * 30)
        result = evaluate_proximity(days, [make_zone(0, 9, score=0.45)])
        assert result.level == ProximityLevel.NONE
        assert result.signals == []

    def test_too_few_days(self):
        days = make_days([100.0] * 14, [1_000.0] * 14)
        result = evaluate_proximity(days, _zones())
        assert result.composite_score == 0
        assert result.signals == []


class TestProximitySignals:
    def test_composite_imminent(self):
        days = make_days([100.0] * 30, _anomaly_deltas())
        result = evaluate_proximity(days, _zones())
        types = {s.type for s in result.signals}
        assert types == {"delta_anomaly", "green_streak", "multi_zone_sequence", "extreme_absorption"}
        assert result.composite_score == 80
        assert result.level == ProximityLevel.IMMINENT

        anomaly = next(s for s in result.signals if s.type == "delta_anomaly")
        assert anomaly.points == 25
        assert "10.0x" in anomaly.detail
        assert "+10K" in anomaly.detail

    def test_rally_caps_composite(self):
        closes = [100.0 + 2 * i for i in range(30)]
        days = make_days(closes, _anomaly_deltas())
        result = evaluate_proximity(days, _zones())
        assert len(result.signals) == 4
        assert result.composite_score == 40
        assert result.level == ProximityLevel.ELEVATED

    def test_negative_spike_is_not_an_anomaly(self):
        days = make_days([100.0] * 30, _anomaly_deltas(value=-10_000.0))
        types = {s.type for s in evaluate_proximity(days, _zones()).signals}
        assert "delta_anomaly" not in types
        assert "green_streak" in types

    def test_seller_exhaustion(self):
        deltas = [-200.0, 500.0] * 11 + [-1_000.0, -2_000.0, -3_000.0]
        days = make_days([100.0] * len(deltas), deltas)
        result = evaluate_proximity(days, [make_zone(0, 9, score=0.6)])
        [signal] = [s for s in result.signals if s.type == "seller_exhaustion"]
        assert signal.points == 15
        assert "3-day red streak (intensifying)" == signal.detail

    def test_absorption_cluster(self):
        closes = [100.0 - 0.5 * i for i in range(20)]
        deltas = [2_000.0 if i % 3 else -500.0 for i in range(20)]
        days = make_days(closes, deltas)
        types = {s.type for s in evaluate_proximity(days, [make_zone(0, 9, score=0.6)]).signals}
        assert "absorption_cluster" in types

    def test_final_capitulation(self):
        closes = [100.0] * 19 + [96.0]
        deltas = [800.0, -600.0] * 9 + [700.0, -20_000.0]
        days = make_days(closes, deltas)
        result = evaluate_proximity(days, [make_zone(0, 9, score=0.6)])
        [signal] = [s for s in result.signals if s.type == "final_capitulation"]
        assert signal.points == 10
        assert "-4.0%" in signal.detail

    def test_old_zone_has_no_extreme_absorption(self):
        days = make_days([100.0] * 120, [800.0, -600.0] * 60)
        old = make_zone(0, 10, score=0.6, absorption_pct=60.0)
        types = {s.type for s in evaluate_proximity(days, [old]).signals}
        assert "extreme_absorption" not in types


class TestLevels:
    @pytest.mark.parametrize("composite,level", [
        (0, ProximityLevel.NONE),
        (29, ProximityLevel.NONE),
        (30, ProximityLevel.ELEVATED),
        (49, ProximityLevel.ELEVATED),
        (50, ProximityLevel.HIGH),
        (69, ProximityLevel.HIGH),
        (70, ProximityLevel.IMMINENT),
        (125, ProximityLevel.IMMINENT),
    ])
    def test_level_for(self, composite, level):
        assert level_for(composite) == level
