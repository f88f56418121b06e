"""
VDF Scoring Engine

Scores one contiguous slice of daily aggregates for accumulation divergence:
price flat or falling while capped volume delta is net positive.

Hard gates run in order and the first one that fails short-circuits:
  1. price_gate            overall price change outside (-45%, +3%]
  2. (3-sigma delta capping, not a rejection)
  3. concordant_selling    net delta % below -1.5
  4. concordant_dominated  positive delta explained by up days (> 70%)
  5. slope_gate            normalized weekly cumulative-delta slope < -0.5

Windows that survive get eight weighted components, a concordance penalty
and a duration multiplier.

Pure domain logic, no I/O.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vdf.engines.aggregation_engine import build_weeks
from vdf.models import (
    CappedDay,
    DailyAggregate,
    GateReason,
    GateRejection,
    ScoreComponents,
    ScoreReason,
    WindowOutcome,
    WindowScore,
)
from vdf.utils.stats import clamp, lin_reg, mean, ramp, std


# ──────────────────────────────────────────────
# Gate Constants
# ──────────────────────────────────────────────

MIN_WEEKS = 2
PRICE_CHANGE_MAX = 3.0  # inclusive upper bound, %
PRICE_CHANGE_MIN = -45.0  # exclusive lower bound, %
OUTLIER_SIGMA = 3.0
NET_DELTA_PCT_MIN = -1.5
CONCORDANT_FRAC_MAX = 0.70
DELTA_SLOPE_MIN = -0.5

# ──────────────────────────────────────────────
# Component Ramps: component = clamp((raw + offset) / span)
# ──────────────────────────────────────────────

S1_NET_DELTA_RAMP = (1.5, 5.0)
S2_SLOPE_RAMP = (0.5, 4.0)
S3_DELTA_SHIFT_RAMP = (1.0, 8.0)
S4_ACCUM_WEEK_RAMP = (-0.2, 0.6)
S5_LARGE_DAY_RAMP = (3.0, 12.0)
S6_ABSORPTION_SPAN = 15.0
S7_VOL_DECLINE_CAP = 0.30  # decline fraction that maps to 1.0
S7_MIN_THIRD_DAYS = 3
S8_PRICE_PIVOT = 3.0
S8_PRICE_SPAN = 8.0
S8_DELTA_SPAN = 3.0

LARGE_DAY_VOLUME_FRAC = 0.10  # |delta| above 10% of avg daily volume

COMPONENT_WEIGHTS = {
    "s1": 0.20,
    "s2": 0.15,
    "s3": 0.10,
    "s4": 0.10,
    "s5": 0.05,
    "s6": 0.18,
    "s7": 0.05,
    "s8": 0.17,
}

# ──────────────────────────────────────────────
# Penalty / Multiplier / Threshold
# ──────────────────────────────────────────────

CONCORDANCE_PENALTY_START = 0.55
CONCORDANCE_PENALTY_SLOPE = 1.5
CONCORDANCE_PENALTY_FLOOR = 0.40

DURATION_BASE = 0.70
DURATION_STEP = 0.075
DURATION_MAX = 1.15

DETECTION_THRESHOLD = 0.30


# ──────────────────────────────────────────────
# Outlier Capping
# ──────────────────────────────────────────────

def cap_bounds(deltas: Sequence[float], sigma: float = OUTLIER_SIGMA) -> tuple[float, float]:
    """Return ``(low, high)`` = mean -/+ sigma * sample std of ``deltas``."""
    m = mean(deltas)
    s = std(deltas)
    return m - sigma * s, m + sigma * s


def apply_caps(
    deltas: Sequence[float],
    dates: Sequence[str],
    low: float,
    high: float,
) -> tuple[list[float], list[CappedDay]]:
    """Clip each delta into ``[low, high]`` and record every clipped day."""
    capped: list[float] = []
    audit: list[CappedDay] = []
    for value, date in zip(deltas, dates):
        if value > high or value < low:
            clipped = max(low, min(high, value))
            audit.append(CappedDay(date=date, original=value, capped=clipped))
            capped.append(clipped)
        else:
            capped.append(value)
    return capped, audit


def cap_outliers(daily: Sequence[DailyAggregate]) -> tuple[list[float], list[CappedDay]]:
    """3-sigma cap the daily deltas of ``daily`` (single pass)."""
    deltas = [d.delta for d in daily]
    low, high = cap_bounds(deltas)
    return apply_caps(deltas, [d.date for d in daily], low, high)


# ──────────────────────────────────────────────
# Window Scorer
# ──────────────────────────────────────────────

def score_window(
    daily_slice: Sequence[DailyAggregate],
    pre_context: Sequence[DailyAggregate] = (),
) -> Optional[WindowOutcome]:
    """Score one window of consecutive daily aggregates.

    Args:
        daily_slice: The candidate window, ascending by date.
        pre_context: Days immediately before the scan period, used as the
            baseline for the delta-shift component.

    Returns:
        None when the slice spans fewer than two weeks, a GateRejection when
        a hard gate fires, otherwise a WindowScore.
    """
    weeks = build_weeks(daily_slice)
    if len(weeks) < MIN_WEEKS:
        return None

    n = len(daily_slice)
    total_vol = sum(d.total_volume for d in daily_slice)
    avg_daily_vol = total_vol / n
    closes = [d.close for d in daily_slice]
    overall_price_change = _pct_change(closes[0], closes[-1])

    # Gate 1: price must be flat-ish or declining, not collapsing
    if not (PRICE_CHANGE_MIN < overall_price_change <= PRICE_CHANGE_MAX):
        return GateRejection(
            reason=GateReason.PRICE_GATE,
            overall_price_change=overall_price_change,
        )

    # Gate 2: 3-sigma capping, all later sums use capped deltas
    capped, capped_days = cap_outliers(daily_slice)

    net_delta = sum(capped)
    net_delta_pct = net_delta / total_vol * 100 if total_vol > 0 else 0.0

    # Gate 3
    if net_delta_pct < NET_DELTA_PCT_MIN:
        return GateRejection(
            reason=GateReason.CONCORDANT_SELLING,
            overall_price_change=overall_price_change,
            net_delta_pct=net_delta_pct,
            capped_days=capped_days,
        )

    # Gate 4: concordant rally vs absorption
    intra_rally = _pct_change(closes[0], max(closes))
    concordant_frac = 0.0
    if net_delta_pct > 0:
        concordant_up = 0.0
        absorption = 0.0
        for i in range(1, n):
            day_delta = capped[i]
            if day_delta <= 0:
                continue
            price_move = closes[i] - closes[i - 1]
            if price_move > 0:
                concordant_up += day_delta
            elif price_move < 0:
                absorption += day_delta
        positive = concordant_up + absorption
        concordant_frac = concordant_up / positive if positive > 0 else 0.0

        if concordant_frac > CONCORDANT_FRAC_MAX:
            return GateRejection(
                reason=GateReason.CONCORDANT_DOMINATED,
                overall_price_change=overall_price_change,
                net_delta_pct=net_delta_pct,
                concordant_frac=concordant_frac,
                intra_rally=intra_rally,
                capped_days=capped_days,
            )

    # Gate 5: cumulative weekly delta slope
    weekly_deltas = _weekly_capped_deltas(weeks, capped)
    cumulative = []
    running = 0.0
    for wd in weekly_deltas:
        running += wd
        cumulative.append(running)
    avg_weekly_vol = sum(w.total_volume for w in weeks) / len(weeks)
    slope = lin_reg(list(range(len(weeks))), cumulative).slope
    delta_slope_norm = slope / avg_weekly_vol * 100 if avg_weekly_vol > 0 else 0.0

    if delta_slope_norm < DELTA_SLOPE_MIN:
        return GateRejection(
            reason=GateReason.SLOPE_GATE,
            overall_price_change=overall_price_change,
            net_delta_pct=net_delta_pct,
            concordant_frac=concordant_frac,
            intra_rally=intra_rally,
            delta_slope_norm=delta_slope_norm,
            capped_days=capped_days,
        )

    # Delta shift vs pre-context baseline
    if pre_context:
        pre_avg_delta = sum(d.delta for d in pre_context) / len(pre_context)
        pre_avg_vol = sum(d.total_volume for d in pre_context) / len(pre_context)
    else:
        pre_avg_delta = 0.0
        pre_avg_vol = avg_daily_vol
    delta_shift = (net_delta / n - pre_avg_delta) / pre_avg_vol * 100 if pre_avg_vol > 0 else 0.0

    # Absorption days: price down, raw delta positive
    absorption_days = sum(
        1 for i in range(1, n) if closes[i] < closes[i - 1] and daily_slice[i].delta > 0
    )
    absorption_pct = absorption_days / (n - 1) * 100 if n > 1 else 0.0

    large_cut = avg_daily_vol * LARGE_DAY_VOLUME_FRAC
    large_buy = sum(1 for d in daily_slice if d.delta > large_cut)
    large_sell = sum(1 for d in daily_slice if d.delta < -large_cut)
    large_buy_vs_sell = (large_buy - large_sell) / n * 100

    accum_weeks = sum(1 for wd in weekly_deltas if wd > 0)
    accum_week_ratio = accum_weeks / len(weeks)

    vol_decline_score = _volume_decline(daily_slice)

    s8 = 0.0
    if net_delta_pct > 0:
        price_factor = clamp((S8_PRICE_PIVOT - overall_price_change) / S8_PRICE_SPAN)
        delta_factor = clamp(net_delta_pct / S8_DELTA_SPAN)
        s8 = price_factor * delta_factor

    components = ScoreComponents(
        s1=ramp(net_delta_pct, *S1_NET_DELTA_RAMP),
        s2=ramp(delta_slope_norm, *S2_SLOPE_RAMP),
        s3=ramp(delta_shift, *S3_DELTA_SHIFT_RAMP),
        s4=ramp(accum_week_ratio, *S4_ACCUM_WEEK_RAMP),
        s5=ramp(large_buy_vs_sell, *S5_LARGE_DAY_RAMP),
        s6=clamp(absorption_pct / S6_ABSORPTION_SPAN),
        s7=vol_decline_score,
        s8=s8,
    )
    raw_score = weighted_score(components)

    concordance_penalty = concordance_penalty_for(concordant_frac)
    duration_multiplier = duration_multiplier_for(len(weeks))
    score = raw_score * concordance_penalty * duration_multiplier
    detected = score >= DETECTION_THRESHOLD

    return WindowScore(
        score=score,
        detected=detected,
        reason=ScoreReason.ACCUMULATION_DIVERGENCE if detected else ScoreReason.BELOW_THRESHOLD,
        net_delta_pct=net_delta_pct,
        overall_price_change=overall_price_change,
        delta_slope_norm=delta_slope_norm,
        accum_week_ratio=accum_week_ratio,
        delta_shift=delta_shift,
        weeks=len(weeks),
        accum_weeks=accum_weeks,
        absorption_pct=absorption_pct,
        large_buy_vs_sell=large_buy_vs_sell,
        vol_decline_score=vol_decline_score,
        components=components,
        duration_multiplier=duration_multiplier,
        concordance_penalty=concordance_penalty,
        intra_rally=intra_rally,
        concordant_frac=concordant_frac,
        capped_days=capped_days,
    )


def weighted_score(components: ScoreComponents) -> float:
    """Sum of component * weight."""
    values = components.model_dump()
    return sum(values[name] * weight for name, weight in COMPONENT_WEIGHTS.items())


def concordance_penalty_for(concordant_frac: float) -> float:
    """1.0 up to 0.55, then a linear decay floored at 0.40."""
    if concordant_frac <= CONCORDANCE_PENALTY_START:
        return 1.0
    return max(
        CONCORDANCE_PENALTY_FLOOR,
        1.0 - (concordant_frac - CONCORDANCE_PENALTY_START) * CONCORDANCE_PENALTY_SLOPE,
    )


def duration_multiplier_for(week_count: int) -> float:
    """0.70 at two weeks, +0.075 per extra week, capped at 1.15."""
    return min(DURATION_MAX, DURATION_BASE + (week_count - 2) * DURATION_STEP)


# ── Helpers ──────────────────────────────────────


def _pct_change(first: float, last: float) -> float:
    if first == 0:
        return 0.0
    return (last - first) / first * 100


def _weekly_capped_deltas(weeks, capped: Sequence[float]) -> list[float]:
    """Sum capped daily deltas per week; days and weeks share date order."""
    sums = []
    idx = 0
    for week in weeks:
        total = 0.0
        for _ in range(week.n_days):
            if idx >= len(capped):
                break
            total += capped[idx]
            idx += 1
        sums.append(total)
    return sums


def _volume_decline(daily_slice: Sequence[DailyAggregate]) -> float:
    """Volume decline from the first third to the last third of the window."""
    third = len(daily_slice) // 3
    if third < S7_MIN_THIRD_DAYS:
        return 0.0
    first_avg = mean([d.total_volume for d in daily_slice[:third]])
    last_avg = mean([d.total_volume for d in daily_slice[2 * third:]])
    if first_avg <= 0 or last_avg >= first_avg:
        return 0.0
    return min(1.0, (first_avg - last_avg) / first_avg / S7_VOL_DECLINE_CAP)
