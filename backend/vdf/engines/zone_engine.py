"""
VDF Zone Engine

Accumulation zones: score every window size at every start offset, then
greedily keep the best non-overlapping detected windows.

Distribution clusters: the inverse pattern (price up, delta down) found with
a fixed 10-day rolling window and merged when windows sit close together.

Pure domain logic, no I/O.
"""

from __future__ import annotations

from typing import Sequence

from vdf.engines.scoring_engine import score_window
from vdf.models import DailyAggregate, DistributionCluster, WindowScore, Zone


# ──────────────────────────────────────────────
# Accumulation Zone Constants
# ──────────────────────────────────────────────

WINDOW_SIZES = (10, 14, 17, 20, 24, 28, 35)
DEFAULT_MAX_ZONES = 3
MAX_OVERLAP_FRAC = 0.30
MIN_ZONE_GAP_DAYS = 10

# ──────────────────────────────────────────────
# Distribution Cluster Constants
# ──────────────────────────────────────────────

DIST_WINDOW_DAYS = 10
DIST_MIN_PRICE_CHANGE = 3.0  # %, exclusive
DIST_MAX_DELTA_PCT = -3.0  # %, exclusive
DIST_MERGE_GAP_DAYS = 5


def find_zones(
    daily: Sequence[DailyAggregate],
    pre_context: Sequence[DailyAggregate] = (),
    max_zones: int = DEFAULT_MAX_ZONES,
) -> list[Zone]:
    """Find up to ``max_zones`` ranked, non-overlapping accumulation zones.

    Candidates are ordered by descending score; ties keep scan order
    (window size ascending, then start offset ascending).
    """
    candidates: list[Zone] = []
    for size in WINDOW_SIZES:
        if len(daily) < size:
            continue
        for start in range(len(daily) - size + 1):
            window = daily[start:start + size]
            result = score_window(window, pre_context)
            if isinstance(result, WindowScore) and result.detected:
                candidates.append(
                    Zone(
                        **dict(result),
                        start=start,
                        end=start + size - 1,
                        window_days=size,
                        start_date=window[0].date,
                        end_date=window[-1].date,
                    )
                )

    candidates.sort(key=lambda z: z.score, reverse=True)

    zones: list[Zone] = []
    for candidate in candidates:
        if len(zones) >= max_zones:
            break
        if any(_conflicts(candidate, accepted) for accepted in zones):
            continue
        zones.append(candidate.model_copy(update={"rank": len(zones) + 1}))
    return zones


def _conflicts(candidate: Zone, accepted: Zone) -> bool:
    """True when overlap exceeds 30% of the candidate or the gap is under 10 days."""
    overlap_days = max(0, min(candidate.end, accepted.end) - max(candidate.start, accepted.start) + 1)
    size = candidate.end - candidate.start + 1
    gap = zone_gap(candidate, accepted)
    return overlap_days / size > MAX_OVERLAP_FRAC or gap < MIN_ZONE_GAP_DAYS


def zone_gap(a: Zone, b: Zone) -> int:
    """Days between two zones, 0 when they overlap."""
    if a.start > b.end:
        return a.start - b.end
    if b.start > a.end:
        return b.start - a.end
    return 0


def find_distribution_clusters(daily: Sequence[DailyAggregate]) -> list[DistributionCluster]:
    """Find merged runs of 10-day windows where price rose but delta fell."""
    flagged = []
    for start in range(len(daily) - DIST_WINDOW_DAYS + 1):
        window = daily[start:start + DIST_WINDOW_DAYS]
        price_change, _, net_delta_pct = _window_stats(window)
        if price_change > DIST_MIN_PRICE_CHANGE and net_delta_pct < DIST_MAX_DELTA_PCT:
            flagged.append((start, start + DIST_WINDOW_DAYS - 1, price_change, net_delta_pct))

    clusters: list[dict] = []
    for start, end, price_change, net_delta_pct in flagged:
        last = clusters[-1] if clusters else None
        if last is not None and start <= last["end"] + DIST_MERGE_GAP_DAYS:
            last["end"] = max(last["end"], end)
            last["count"] += 1
            last["max_price_change"] = max(last["max_price_change"], price_change)
            last["min_delta_pct"] = min(last["min_delta_pct"], net_delta_pct)
        else:
            clusters.append({
                "start": start,
                "end": end,
                "count": 1,
                "max_price_change": price_change,
                "min_delta_pct": net_delta_pct,
            })

    result = []
    for c in clusters:
        span = daily[c["start"]:c["end"] + 1]
        price_change, net_delta, net_delta_pct = _window_stats(span)
        result.append(
            DistributionCluster(
                start=c["start"],
                end=c["end"],
                start_date=span[0].date,
                end_date=span[-1].date,
                count=c["count"],
                max_price_change=c["max_price_change"],
                min_delta_pct=c["min_delta_pct"],
                span_days=c["end"] - c["start"] + 1,
                price_change_pct=price_change,
                net_delta=net_delta,
                net_delta_pct=net_delta_pct,
            )
        )
    return result


def _window_stats(window: Sequence[DailyAggregate]) -> tuple[float, float, float]:
    """(price change %, net delta, net delta % of volume) over ``window``."""
    first = window[0].close
    price_change = (window[-1].close - first) / first * 100 if first != 0 else 0.0
    total_vol = sum(d.total_volume for d in window)
    net_delta = sum(d.delta for d in window)
    net_delta_pct = net_delta / total_vol * 100 if total_vol > 0 else 0.0
    return price_change, net_delta, net_delta_pct
