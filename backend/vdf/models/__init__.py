"""
VDF Pydantic Models

All records produced and consumed by the detector. Engines return these,
the scan service collects them, callers serialize them however they like.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class GateReason(str, Enum):
    """Hard gate that rejected a window (first failing gate wins)."""
    PRICE_GATE = "price_gate"
    CONCORDANT_SELLING = "concordant_selling"
    CONCORDANT_DOMINATED = "concordant_dominated"
    SLOPE_GATE = "slope_gate"


class ScoreReason(str, Enum):
    """Outcome of a window that passed every gate."""
    ACCUMULATION_DIVERGENCE = "accumulation_divergence"
    BELOW_THRESHOLD = "below_threshold"


class ProximityLevel(str, Enum):
    """Breakout proximity grade."""
    NONE = "none"
    ELEVATED = "elevated"
    HIGH = "high"
    IMMINENT = "imminent"


class DetectionMode(str, Enum):
    """scan = recent window only, chart = whole fetched history."""
    SCAN = "scan"
    CHART = "chart"


class ScanRunStatus(str, Enum):
    """Lifecycle of a batch scan."""
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_RETRY = "running-retry"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed-with-errors"
    FAILED = "failed"


# ──────────────────────────────────────────────
# Market Data Models
# ──────────────────────────────────────────────

class MinuteBar(BaseModel):
    """Single 1-minute bar. ``time`` is unix seconds."""
    model_config = ConfigDict(frozen=True)

    time: float
    open: float
    high: float
    low: float
    close: float
    volume: float


class DailyAggregate(BaseModel):
    """Minute bars collapsed into one UTC calendar day."""
    model_config = ConfigDict(frozen=True)

    date: str  # YYYY-MM-DD (UTC)
    buy_volume: float
    sell_volume: float
    total_volume: float  # includes volume of unchanged (close == open) bars
    delta: float  # buy_volume - sell_volume
    open: float
    close: float
    high: float
    low: float


class WeeklyAggregate(BaseModel):
    """Daily aggregates grouped by Monday-start week."""
    model_config = ConfigDict(frozen=True)

    week_start: str
    delta: float
    total_volume: float
    delta_pct: float
    n_days: int


# ──────────────────────────────────────────────
# Window Scoring Models
# ──────────────────────────────────────────────

class CappedDay(BaseModel):
    """Audit entry for a daily delta clipped by 3-sigma capping."""
    date: str
    original: float
    capped: float


class ScoreComponents(BaseModel):
    """The eight weighted scoring components, each in [0, 1]."""
    s1: float = 0.0  # net delta %
    s2: float = 0.0  # weekly delta slope
    s3: float = 0.0  # delta shift vs pre-context
    s4: float = 0.0  # accumulation-week ratio
    s5: float = 0.0  # large buy vs sell days
    s6: float = 0.0  # absorption %
    s7: float = 0.0  # volume decline
    s8: float = 0.0  # divergence factor


class WindowScore(BaseModel):
    """A window that passed every hard gate."""
    score: float
    detected: bool
    reason: ScoreReason
    net_delta_pct: float
    overall_price_change: float
    delta_slope_norm: float
    accum_week_ratio: float
    delta_shift: float
    weeks: int
    accum_weeks: int
    absorption_pct: float
    large_buy_vs_sell: float
    vol_decline_score: float
    components: ScoreComponents
    duration_multiplier: float
    concordance_penalty: float
    intra_rally: float
    concordant_frac: float
    capped_days: list[CappedDay] = []


class GateRejection(BaseModel):
    """A window rejected by a hard gate. Score is always zero."""
    reason: GateReason
    score: float = 0.0
    detected: bool = False
    overall_price_change: float
    net_delta_pct: Optional[float] = None
    concordant_frac: Optional[float] = None
    intra_rally: Optional[float] = None
    delta_slope_norm: Optional[float] = None
    capped_days: list[CappedDay] = []


WindowOutcome = Union[WindowScore, GateRejection]


class Zone(WindowScore):
    """A ranked, non-overlapping detected accumulation window."""
    start: int
    end: int
    window_days: int
    start_date: str
    end_date: str
    rank: Optional[int] = None


class DistributionCluster(BaseModel):
    """Merged run of 10-day windows with rising price and negative delta."""
    start: int
    end: int
    start_date: str
    end_date: str
    count: int
    max_price_change: float
    min_delta_pct: float
    span_days: int = 0
    price_change_pct: float = 0.0
    net_delta: float = 0.0
    net_delta_pct: float = 0.0


# ──────────────────────────────────────────────
# Proximity Models
# ──────────────────────────────────────────────

class ProximitySignal(BaseModel):
    """One breakout-precursor signal that fired."""
    type: str
    points: int
    detail: str


class ProximityResult(BaseModel):
    """Composite breakout proximity grade."""
    composite_score: int = 0
    level: ProximityLevel = ProximityLevel.NONE
    signals: list[ProximitySignal] = []


# ──────────────────────────────────────────────
# Detection Result
# ──────────────────────────────────────────────

class DetectionMetrics(BaseModel):
    """Shape of the data the detector looked at."""
    total_days: int = 0
    scan_start: Optional[str] = None
    scan_end: Optional[str] = None
    pre_days: int = 0
    recent_cutoff: Optional[str] = None


class DetectionResult(BaseModel):
    """Full output of one ``detect`` call."""
    ticker: str
    detected: bool = False
    best_score: float = 0.0
    best_zone_weeks: int = 0
    reason: str
    status: str
    zones: list[Zone] = []
    all_zones: list[Zone] = []
    distribution: list[DistributionCluster] = []
    proximity: ProximityResult = Field(default_factory=ProximityResult)
    metrics: DetectionMetrics = Field(default_factory=DetectionMetrics)


# ──────────────────────────────────────────────
# Batch Scan Models
# ──────────────────────────────────────────────

class ScanStatus(BaseModel):
    """Snapshot of a batch scan's progress."""
    running: bool = False
    stop_requested: bool = False
    can_resume: bool = False
    status: ScanRunStatus = ScanRunStatus.IDLE
    total_tickers: int = 0
    processed_tickers: int = 0
    error_tickers: int = 0
    detected_tickers: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
