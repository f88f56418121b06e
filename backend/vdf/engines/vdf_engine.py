"""
VDF Engine (orchestrator)

Detects hidden institutional accumulation: multi-week stretches where price
is flat or falling while 1-minute volume delta is net positive.

Pipeline:
  minute bars -> daily aggregates -> window scores -> zones / clusters
  -> proximity grading -> DetectionResult

``detect`` is synchronous, deterministic and side-effect free. Many tickers
can be evaluated in parallel; ``detect_ticker`` wraps it with the async
bar fetch and the cancellation token.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence

import structlog

from vdf.config import Settings, get_settings
from vdf.engines.aggregation_engine import aggregate_daily
from vdf.engines.proximity_engine import evaluate_proximity
from vdf.engines.zone_engine import find_distribution_clusters, find_zones
from vdf.errors import DetectionAborted
from vdf.models import (
    DetectionMetrics,
    DetectionMode,
    DetectionResult,
    MinuteBar,
    ProximityLevel,
    ScoreReason,
)

log = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86_400

BarFetcher = Callable[[str, int, Optional[asyncio.Event]], Awaitable[Sequence[MinuteBar]]]


class VDFEngine:
    """Volume Divergence Flag detector."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ── Core Methods ──────────────────────────────────

    def detect(
        self,
        ticker: str,
        bars: Sequence[MinuteBar],
        mode: DetectionMode = DetectionMode.SCAN,
    ) -> DetectionResult:
        """Run the full detection pipeline on a ticker's minute bars.

        Args:
            ticker: Symbol, carried through to the result.
            bars: 1-minute bars in any order, finite numeric fields.
            mode: SCAN looks at the last ``scan_days``; CHART at everything.

        Returns:
            DetectionResult. Insufficient data yields ``detected=False`` with
            an ``insufficient_*`` reason rather than an exception.
        """
        s = self.settings
        if len(bars) < s.min_minute_bars:
            return self._empty(ticker, "insufficient_1m_data", "Insufficient 1m data")

        ordered = sorted(bars, key=lambda b: b.time)
        latest_time = ordered[-1].time

        if mode == DetectionMode.CHART:
            scan_cutoff = ordered[0].time
        else:
            scan_cutoff = latest_time - s.scan_days * SECONDS_PER_DAY
        pre_cutoff = scan_cutoff - s.pre_context_days * SECONDS_PER_DAY

        scan_bars = [b for b in ordered if b.time >= scan_cutoff]
        pre_bars = [b for b in ordered if pre_cutoff <= b.time < scan_cutoff]

        if len(scan_bars) < s.min_scan_bars:
            return self._empty(ticker, "insufficient_scan_data", "Insufficient scan data")

        daily = aggregate_daily(scan_bars)
        pre_daily = aggregate_daily(pre_bars)

        if len(daily) < s.min_daily_days:
            return self._empty(ticker, "insufficient_daily_data", "Insufficient daily data")

        all_zones = find_zones(daily, pre_daily, max_zones=s.max_zones)
        clusters = find_distribution_clusters(daily)

        recent_cutoff = _utc_date(latest_time - s.recent_days * SECONDS_PER_DAY)
        zones = [z for z in all_zones if z.end_date >= recent_cutoff]

        proximity = evaluate_proximity(daily, zones)

        best = max(zones, key=lambda z: z.score) if zones else None
        best_score = best.score if best else 0.0
        best_weeks = best.weeks if best else 0
        detected = bool(zones)

        if detected:
            plural = "s" if len(zones) > 1 else ""
            status = (
                f"VD Accumulation detected: {len(zones)} zone{plural}, "
                f"best {best_score:.2f} ({best_weeks}wk)"
            )
            if proximity.level != ProximityLevel.NONE:
                status += f" | Proximity: {proximity.level.value} ({proximity.composite_score}pts)"
            if clusters:
                plural = "s" if len(clusters) > 1 else ""
                status += f" | {len(clusters)} distribution cluster{plural}"
        else:
            status = "No accumulation zones detected"

        log.debug(
            "vdf.detect_complete",
            ticker=ticker,
            mode=mode.value,
            days=len(daily),
            zones=len(zones),
            all_zones=len(all_zones),
            clusters=len(clusters),
            best_score=round(best_score, 4),
            proximity=proximity.level.value,
        )

        reason = ScoreReason.ACCUMULATION_DIVERGENCE if detected else ScoreReason.BELOW_THRESHOLD
        return DetectionResult(
            ticker=ticker,
            detected=detected,
            best_score=best_score,
            best_zone_weeks=best_weeks,
            reason=reason.value,
            status=status,
            zones=zones,
            all_zones=all_zones,
            distribution=clusters,
            proximity=proximity,
            metrics=DetectionMetrics(
                total_days=len(daily),
                scan_start=daily[0].date,
                scan_end=daily[-1].date,
                pre_days=len(pre_daily),
                recent_cutoff=recent_cutoff,
            ),
        )

    async def detect_ticker(
        self,
        ticker: str,
        fetch_bars: BarFetcher,
        cancel_event: Optional[asyncio.Event] = None,
        mode: DetectionMode = DetectionMode.SCAN,
    ) -> DetectionResult:
        """Fetch minute bars for ``ticker`` and run ``detect``.

        Cancellation (``asyncio.CancelledError`` or ``DetectionAborted``) is
        re-raised so callers can tell it apart from missing data. Any other
        failure becomes an ``error:`` result.
        """
        days = self.settings.fetch_days_chart if mode == DetectionMode.CHART else self.settings.fetch_days_scan
        if cancel_event is not None and cancel_event.is_set():
            raise DetectionAborted(ticker, stage="fetch")

        try:
            bars = await fetch_bars(ticker, days, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                raise DetectionAborted(ticker, stage="detect")
            return self.detect(ticker, list(bars or []), mode=mode)
        except (asyncio.CancelledError, DetectionAborted):
            raise
        except Exception as exc:
            log.warning("vdf.detect_failed", ticker=ticker, error=str(exc))
            return self._empty(ticker, f"error: {exc}", f"Error: {exc}")

    # ── Helpers ──────────────────────────────────────

    @staticmethod
    def _empty(ticker: str, reason: str, status: str) -> DetectionResult:
        return DetectionResult(ticker=ticker, reason=reason, status=status)


def _utc_date(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")
