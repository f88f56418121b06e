"""
VDF Scan Service

Runs the detector over a ticker universe with bounded concurrency.

Lifecycle:
  idle -> running -> (running-retry) -> completed | completed-with-errors
  running -> stopping -> stopped   (resumable from the saved index)
  any -> failed                    (unexpected error in the scan loop)

Failed tickers (fetch errors, ``error:`` results) get up to two retry
passes at 1/2 then 1/4 of the base concurrency. Results live only for the
duration of the service; nothing is persisted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

import structlog

from vdf.config import Settings, get_settings
from vdf.engines.vdf_engine import BarFetcher, VDFEngine
from vdf.errors import DetectionAborted
from vdf.models import DetectionMode, DetectionResult, ScanRunStatus, ScanStatus
from vdf.utils.concurrency import Settled, map_with_concurrency
from vdf.utils.validators import validate_tickers

log = structlog.get_logger(__name__)

RETRY_PASS_DIVISORS = (2, 4)
IN_PROGRESS_REASON = "in_progress"


@dataclass
class ResumeState:
    """Where a stopped scan picks up again."""
    tickers: list[str]
    next_index: int
    detected: set[str]
    failed: set[str]


@dataclass
class ScanState:
    """Mutable state of the current (or last) batch scan."""
    running: bool = False
    stop_requested: bool = False
    status: ScanRunStatus = ScanRunStatus.IDLE
    cancel_event: Optional[asyncio.Event] = None
    total: int = 0
    processed: int = 0
    detected: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    resume: Optional[ResumeState] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def snapshot(self) -> ScanStatus:
        return ScanStatus(
            running=self.running,
            stop_requested=self.stop_requested,
            can_resume=self.resume is not None and not self.running,
            status=self.status,
            total_tickers=self.total,
            processed_tickers=self.processed,
            error_tickers=len(self.failed),
            detected_tickers=len(self.detected),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class VDFScanService:
    """Batch and single-ticker VDF detection."""

    def __init__(
        self,
        fetch_bars: Optional[BarFetcher] = None,
        engine: Optional[VDFEngine] = None,
        universe: Sequence[str] = (),
        settings: Optional[Settings] = None,
        mode: DetectionMode = DetectionMode.SCAN,
    ):
        self.settings = settings or get_settings()
        self.engine = engine or VDFEngine(self.settings)
        if fetch_bars is None:
            from vdf.data.alpaca_client import AlpacaClient
            fetch_bars = AlpacaClient(self.settings).get_minute_bars
        self.fetch_bars = fetch_bars
        self.universe = list(universe)
        self.mode = mode
        self.concurrency = max(1, self.settings.scan_concurrency)
        self.state = ScanState()
        self.results: dict[str, DetectionResult] = {}
        self._in_flight: set[str] = set()

    # ── Status ───────────────────────────────────────

    @property
    def can_resume(self) -> bool:
        return self.state.resume is not None and not self.state.running

    def get_status(self) -> ScanStatus:
        return self.state.snapshot()

    def request_stop(self) -> bool:
        """Ask the running scan to stop. Returns False when nothing is running."""
        if not self.state.running:
            return False
        self.state.stop_requested = True
        self.state.status = ScanRunStatus.STOPPING
        if self.state.cancel_event is not None:
            self.state.cancel_event.set()
        log.info("scan.stop_requested", processed=self.state.processed, total=self.state.total)
        return True

    # ── Batch scan ───────────────────────────────────

    async def run_scan(
        self,
        tickers: Optional[Sequence[str]] = None,
        resume: bool = False,
    ) -> dict:
        """Run (or resume) a batch scan.

        Returns a dict whose ``status`` is one of: running, no-resume,
        stopped, completed, completed-with-errors, failed.

        Raises:
            ValueError: A ticker symbol is malformed (checked before starting).
        """
        state = self.state
        if state.running:
            return {"status": ScanRunStatus.RUNNING.value}

        if resume:
            saved = state.resume
            if saved is None:
                return {"status": "no-resume"}
            universe = saved.tickers
            start_index = saved.next_index
            state.detected = set(saved.detected)
            state.failed = set(saved.failed)
        else:
            universe = validate_tickers(list(tickers if tickers is not None else self.universe))
            start_index = 0
            state.detected = set()
            state.failed = set()
            self.results = {}

        state.running = True
        state.stop_requested = False
        state.status = ScanRunStatus.RUNNING
        state.cancel_event = asyncio.Event()
        state.total = len(universe)
        state.processed = start_index
        state.resume = None
        state.started_at = _now_iso()
        state.finished_at = None

        log.info(
            "scan.started",
            total=len(universe),
            start_index=start_index,
            resume=resume,
            concurrency=self.concurrency,
            mode=self.mode.value,
        )

        try:
            await map_with_concurrency(
                universe[start_index:],
                self.concurrency,
                self._detect,
                on_settled=self._on_main_settled,
                should_stop=lambda: state.stop_requested,
            )

            if state.stop_requested:
                return self._stop(universe)

            await self._retry_failed(universe)

            if state.stop_requested:
                return self._stop(universe)

            state.status = (
                ScanRunStatus.COMPLETED_WITH_ERRORS if state.failed else ScanRunStatus.COMPLETED
            )
            log.info(
                "scan.finished",
                status=state.status.value,
                processed=state.processed,
                detected=len(state.detected),
                errors=len(state.failed),
            )
            return self._summary(universe)
        except Exception as exc:
            state.status = ScanRunStatus.FAILED
            log.error("scan.failed", error=str(exc), processed=state.processed)
            return {"status": ScanRunStatus.FAILED.value, "error": str(exc)}
        finally:
            state.running = False
            state.finished_at = _now_iso()

    async def _retry_failed(self, universe: list[str]) -> None:
        state = self.state
        for pass_no, divisor in enumerate(RETRY_PASS_DIVISORS, start=1):
            if not state.failed or state.stop_requested:
                return
            retry = [t for t in universe if t in state.failed]
            concurrency = max(1, self.concurrency // divisor)
            state.status = ScanRunStatus.RUNNING_RETRY
            log.info("scan.retry_pass", pass_no=pass_no, tickers=len(retry), concurrency=concurrency)
            await map_with_concurrency(
                retry,
                concurrency,
                self._detect,
                on_settled=self._on_retry_settled,
                should_stop=lambda: state.stop_requested,
            )

    def _stop(self, universe: list[str]) -> dict:
        state = self.state
        next_index = max(0, state.processed - self.concurrency)
        state.resume = ResumeState(
            tickers=list(universe),
            next_index=next_index,
            detected=set(state.detected),
            failed=set(state.failed),
        )
        state.status = ScanRunStatus.STOPPED
        log.info("scan.stopped", processed=state.processed, next_index=next_index)
        return self._summary(universe)

    def _summary(self, universe: list[str]) -> dict:
        state = self.state
        return {
            "status": state.status.value,
            "total": len(universe),
            "processed": state.processed,
            "errors": len(state.failed),
            "detected": [t for t in universe if t in state.detected],
        }

    async def _detect(self, ticker: str) -> DetectionResult:
        return await self.engine.detect_ticker(
            ticker,
            self.fetch_bars,
            cancel_event=self.state.cancel_event,
            mode=self.mode,
        )

    def _record(self, settled: Settled) -> Optional[bool]:
        """Store one outcome. Returns True on success, False on failure, None if aborted."""
        ticker = settled.item
        if isinstance(settled.error, DetectionAborted):
            return None
        if settled.error is not None:
            log.warning("scan.ticker_error", ticker=ticker, error=str(settled.error))
            return False

        result: DetectionResult = settled.result
        if result.reason.startswith("error:"):
            log.warning("scan.ticker_error", ticker=ticker, error=result.reason)
            return False

        self.results[ticker] = result
        if result.detected:
            self.state.detected.add(ticker)
        return True

    def _on_main_settled(self, settled: Settled) -> None:
        ok = self._record(settled)
        if ok is None:
            return
        self.state.processed += 1
        if not ok:
            self.state.failed.add(settled.item)

    def _on_retry_settled(self, settled: Settled) -> None:
        if self._record(settled):
            self.state.failed.discard(settled.item)

    # ── Single ticker ────────────────────────────────

    async def detect_one(self, ticker: str) -> DetectionResult:
        """Detect a single ticker, de-duplicating concurrent requests for it."""
        symbol = ticker.strip().upper()
        if symbol in self._in_flight:
            return DetectionResult(
                ticker=symbol,
                reason=IN_PROGRESS_REASON,
                status="Detection in progress",
            )
        self._in_flight.add(symbol)
        try:
            return await self.engine.detect_ticker(symbol, self.fetch_bars, mode=self.mode)
        finally:
            self._in_flight.discard(symbol)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
