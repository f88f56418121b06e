"""
VDF Proximity Engine

Grades how close an accumulating stock may be to a breakout. Only runs when
at least one zone scored >= 0.50. Seven independent precursor signals are
tested over the last ~25 trading days; each one that fires adds fixed
points to the composite.

| Signal              | Points | Fires when                                   |
|---------------------|--------|----------------------------------------------|
| seller_exhaustion   | 15     | 3+ consecutive red-delta days                |
| delta_anomaly       | 25     | green day delta > 4x trailing 20-day avg     |
| green_streak        | 20     | 4+ consecutive green-delta days              |
| absorption_cluster  | 15     | 3 of 5 days down in price with green delta   |
| final_capitulation  | 10     | big red day in last 5 with price drop > 2%   |
| multi_zone_sequence | 20     | two zones less than 30 days apart            |
| extreme_absorption  | 15     | a recent zone with absorption > 40%          |

Pure domain logic, no I/O.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vdf.models import (
    DailyAggregate,
    ProximityLevel,
    ProximityResult,
    ProximitySignal,
    Zone,
)
from vdf.utils.formatters import format_pct, format_ratio, format_volume
from vdf.utils.stats import mean


# ──────────────────────────────────────────────
# Proximity Constants
# ──────────────────────────────────────────────

MIN_ZONE_SCORE = 0.50
MIN_DAILY_DAYS = 15
LOOKBACK_DAYS = 25

SELLER_EXHAUSTION_MIN_STREAK = 3
SELLER_EXHAUSTION_POINTS = 15

DELTA_ANOMALY_RECENT_DAYS = 15
DELTA_ANOMALY_TRAILING_DAYS = 20
DELTA_ANOMALY_MULTIPLE = 4.0
DELTA_ANOMALY_POINTS = 25

GREEN_STREAK_MIN = 4
GREEN_STREAK_POINTS = 20

ABSORPTION_CLUSTER_WINDOW = 5
ABSORPTION_CLUSTER_MIN = 3
ABSORPTION_CLUSTER_POINTS = 15

CAPITULATION_RECENT_DAYS = 5
CAPITULATION_DELTA_MULTIPLE = 2.0
CAPITULATION_PRICE_DROP = -2.0  # %
CAPITULATION_POINTS = 10

MULTI_ZONE_MAX_GAP = 30
MULTI_ZONE_POINTS = 20

EXTREME_ABSORPTION_PCT = 40.0
EXTREME_ABSORPTION_RECENT_DAYS = 90
EXTREME_ABSORPTION_POINTS = 15

RALLY_LOOKBACK_DAYS = 20
RALLY_MIN_DAYS = 10
RALLY_SUPPRESSION_PCT = 20.0
RALLY_SUPPRESSION_CAP = 40

LEVEL_THRESHOLDS = (
    (70, ProximityLevel.IMMINENT),
    (50, ProximityLevel.HIGH),
    (30, ProximityLevel.ELEVATED),
)


def evaluate_proximity(
    daily: Sequence[DailyAggregate],
    zones: Sequence[Zone],
) -> ProximityResult:
    """Grade breakout proximity from the recent daily tape and detected zones."""
    if not zones or max(z.score for z in zones) < MIN_ZONE_SCORE:
        return ProximityResult()

    n = len(daily)
    if n < MIN_DAILY_DAYS:
        return ProximityResult()

    lookback = min(LOOKBACK_DAYS, n)
    recent = list(daily[n - lookback:])
    offset = n - lookback

    checks = (
        _seller_exhaustion(recent),
        _delta_anomaly(daily, recent, offset),
        _green_streak(recent),
        _absorption_cluster(recent),
        _final_capitulation(daily, recent, offset),
        _multi_zone_sequence(zones),
        _extreme_absorption(zones, n),
    )
    signals = [s for s in checks if s is not None]

    composite = sum(s.points for s in signals)
    if _recent_rally_pct(daily) > RALLY_SUPPRESSION_PCT:
        composite = min(composite, RALLY_SUPPRESSION_CAP)

    return ProximityResult(
        composite_score=composite,
        level=level_for(composite),
        signals=signals,
    )


def level_for(composite: int) -> ProximityLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if composite >= threshold:
            return level
    return ProximityLevel.NONE


# ── Signals ──────────────────────────────────────


def _seller_exhaustion(recent: list[DailyAggregate]) -> Optional[ProximitySignal]:
    max_streak = 0
    streak = 0
    intensifying = False
    for i, day in enumerate(recent):
        if day.delta >= 0:
            streak = 0
            continue
        streak += 1
        if streak >= SELLER_EXHAUSTION_MIN_STREAK:
            max_streak = max(max_streak, streak)
            first = recent[i - streak + 1]
            if abs(day.delta) > abs(first.delta):
                intensifying = True

    if max_streak < SELLER_EXHAUSTION_MIN_STREAK:
        return None
    label = "intensifying" if intensifying else "fading"
    return ProximitySignal(
        type="seller_exhaustion",
        points=SELLER_EXHAUSTION_POINTS,
        detail=f"{max_streak}-day red streak ({label})",
    )


def _delta_anomaly(
    daily: Sequence[DailyAggregate],
    recent: list[DailyAggregate],
    offset: int,
) -> Optional[ProximitySignal]:
    for i in range(max(0, len(recent) - DELTA_ANOMALY_RECENT_DAYS), len(recent)):
        day = recent[i]
        if day.delta <= 0:
            continue
        global_idx = offset + i
        trailing = daily[max(0, global_idx - DELTA_ANOMALY_TRAILING_DAYS):global_idx]
        rolling_avg = mean([abs(d.delta) for d in trailing])
        if rolling_avg > 0 and day.delta > DELTA_ANOMALY_MULTIPLE * rolling_avg:
            return ProximitySignal(
                type="delta_anomaly",
                points=DELTA_ANOMALY_POINTS,
                detail=(
                    f"{day.date}: {format_ratio(day.delta / rolling_avg)} avg "
                    f"({format_volume(day.delta, show_sign=True)})"
                ),
            )
    return None


def _green_streak(recent: list[DailyAggregate]) -> Optional[ProximitySignal]:
    best = 0
    streak = 0
    for day in recent:
        streak = streak + 1 if day.delta > 0 else 0
        best = max(best, streak)
    if best < GREEN_STREAK_MIN:
        return None
    return ProximitySignal(
        type="green_streak",
        points=GREEN_STREAK_POINTS,
        detail=f"{best} consecutive green delta days",
    )


def _absorption_cluster(recent: list[DailyAggregate]) -> Optional[ProximitySignal]:
    for i in range(ABSORPTION_CLUSTER_WINDOW - 1, len(recent)):
        absorbed = sum(
            1
            for j in range(i - ABSORPTION_CLUSTER_WINDOW + 1, i + 1)
            if j > 0 and recent[j].close < recent[j - 1].close and recent[j].delta > 0
        )
        if absorbed >= ABSORPTION_CLUSTER_MIN:
            return ProximitySignal(
                type="absorption_cluster",
                points=ABSORPTION_CLUSTER_POINTS,
                detail=f"{absorbed}/{ABSORPTION_CLUSTER_WINDOW} absorption days in window",
            )
    return None


def _final_capitulation(
    daily: Sequence[DailyAggregate],
    recent: list[DailyAggregate],
    offset: int,
) -> Optional[ProximitySignal]:
    avg_abs_delta = mean([abs(d.delta) for d in daily])
    start = max(0, len(recent) - CAPITULATION_RECENT_DAYS)
    for i in range(start, len(recent)):
        day = recent[i]
        if day.delta >= 0 or abs(day.delta) <= CAPITULATION_DELTA_MULTIPLE * avg_abs_delta:
            continue
        global_idx = offset + i
        if global_idx == 0:
            continue
        prev_close = daily[global_idx - 1].close
        if prev_close == 0:
            continue
        price_change = (day.close - prev_close) / prev_close * 100
        if price_change < CAPITULATION_PRICE_DROP:
            return ProximitySignal(
                type="final_capitulation",
                points=CAPITULATION_POINTS,
                detail=(
                    f"{day.date}: {format_volume(day.delta)} "
                    f"({format_pct(price_change, decimals=1, show_sign=False)})"
                ),
            )
    return None


def _multi_zone_sequence(zones: Sequence[Zone]) -> Optional[ProximitySignal]:
    if len(zones) < 2:
        return None
    ordered = sorted(zones, key=lambda z: z.start_date)
    for prev, cur in zip(ordered, ordered[1:]):
        gap = cur.start - prev.end
        if 0 < gap < MULTI_ZONE_MAX_GAP:
            return ProximitySignal(
                type="multi_zone_sequence",
                points=MULTI_ZONE_POINTS,
                detail=f"{len(ordered)} zones with {gap}-day gap",
            )
    return None


def _extreme_absorption(zones: Sequence[Zone], n_days: int) -> Optional[ProximitySignal]:
    cutoff = max(0, n_days - EXTREME_ABSORPTION_RECENT_DAYS)
    for zone in zones:
        if zone.absorption_pct > EXTREME_ABSORPTION_PCT and zone.end >= cutoff:
            return ProximitySignal(
                type="extreme_absorption",
                points=EXTREME_ABSORPTION_POINTS,
                detail=f"Zone {zone.rank}: {zone.absorption_pct:.1f}% absorption",
            )
    return None


def _recent_rally_pct(daily: Sequence[DailyAggregate]) -> float:
    """Price change over the last 20 days, 0 when fewer than 10 are available."""
    window = daily[max(0, len(daily) - RALLY_LOOKBACK_DAYS):]
    if len(window) < RALLY_MIN_DAYS or window[0].close == 0:
        return 0.0
    return (window[-1].close - window[0].close) / window[0].close * 100
