"""
Scan Service Tests: batch scan lifecycle, retry passes, stop/resume, single-ticker dedupe.
"""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from factories import accumulation_bars, bars_for_day, weekdays
from vdf.config import Settings
from vdf.models import ScanRunStatus
from vdf.services.scan_service import VDFScanService

ACCUM = accumulation_bars(20)
FLAT = [
    bar
    for day in weekdays("2024-01-01", 20)
    for bar in bars_for_day(day, 50.0, buy=50_000, sell=50_000)
]


def _service(fetch, concurrency: int = 2) -> VDFScanService:
    settings = Settings(_env_file=None, scan_concurrency=concurrency)
    return VDFScanService(fetch_bars=fetch, settings=settings)


class FakeFetcher:
    """Serves canned bars per ticker and counts calls."""

    def __init__(self, bars_by_ticker, failures=None):
        self.bars_by_ticker = bars_by_ticker
        self.failures = dict(failures or {})
        self.calls = Counter()

    async def __call__(self, ticker, days, cancel_event):
        self.calls[ticker] += 1
        await asyncio.sleep(0)
        if self.failures.get(ticker, 0) > 0:
            self.failures[ticker] -= 1
            raise ConnectionError(f"{ticker} feed down")
        return self.bars_by_ticker[ticker]


class TestRunScan:
    def test_completed(self):
        fetch = FakeFetcher({"ASTS": ACCUM, "RKLB": FLAT, "HUT": ACCUM})
        service = _service(fetch)

        summary = asyncio.run(service.run_scan(["asts", "RKLB", "HUT"]))

        assert summary["status"] == "completed"
        assert summary["total"] == 3
        assert summary["processed"] == 3
        assert summary["errors"] == 0
        assert summary["detected"] == ["ASTS", "HUT"]
        assert set(service.results) == {"ASTS", "RKLB", "HUT"}

        status = service.get_status()
        assert status.status == ScanRunStatus.COMPLETED
        assert status.running is False
        assert status.detected_tickers == 2
        assert status.can_resume is False
        assert status.finished_at is not None

    def test_default_universe(self):
        fetch = FakeFetcher({"ASTS": ACCUM})
        service = _service(fetch)
        service.universe = ["ASTS"]
        summary = asyncio.run(service.run_scan())
        assert summary["detected"] == ["ASTS"]

    def test_flaky_ticker_recovers_on_retry(self):
        fetch = FakeFetcher({"ASTS": ACCUM, "RKLB": FLAT}, failures={"ASTS": 1})
        service = _service(fetch)

        summary = asyncio.run(service.run_scan(["ASTS", "RKLB"]))

        assert summary["status"] == "completed"
        assert summary["detected"] == ["ASTS"]
        assert fetch.calls["ASTS"] == 2
        assert fetch.calls["RKLB"] == 1

    def test_persistent_failure_after_two_retry_passes(self):
        fetch = FakeFetcher({"ASTS": ACCUM, "DEAD": ACCUM}, failures={"DEAD": 99})
        service = _service(fetch)

        summary = asyncio.run(service.run_scan(["ASTS", "DEAD"]))

        assert summary["status"] == "completed-with-errors"
        assert summary["errors"] == 1
        assert summary["detected"] == ["ASTS"]
        assert fetch.calls["DEAD"] == 3
        assert "DEAD" not in service.results
        assert service.get_status().error_tickers == 1

    def test_invalid_ticker_is_rejected_up_front(self):
        fetch = FakeFetcher({"ASTS": ACCUM})
        service = _service(fetch)
        with pytest.raises(ValueError):
            asyncio.run(service.run_scan(["ASTS", "not a ticker"]))
        assert service.get_status().running is False
        assert fetch.calls == Counter()

    def test_already_running(self):
        service = None
        nested = []

        async def fetch(ticker, days, cancel_event):
            nested.append(await service.run_scan(["HUT"]))
            return ACCUM

        service = _service(fetch)
        summary = asyncio.run(service.run_scan(["ASTS"]))
        assert summary["status"] == "completed"
        assert nested == [{"status": "running"}]

    def test_resume_without_state(self):
        service = _service(FakeFetcher({}))
        assert asyncio.run(service.run_scan(resume=True)) == {"status": "no-resume"}

    def test_request_stop_when_idle(self):
        assert _service(FakeFetcher({})).request_stop() is False


class TestStopAndResume:
    TICKERS = ["AAA", "BBB", "CCC", "DDD", "EEE"]

    def test_stop_then_resume(self):
        service = None
        stop_once = {"BBB"}
        seen = []

        async def fetch(ticker, days, cancel_event):
            seen.append(ticker)
            if ticker in stop_once:
                stop_once.discard(ticker)
                assert service.request_stop() is True
                assert service.get_status().status == ScanRunStatus.STOPPING
            return ACCUM if ticker in ("AAA", "DDD") else FLAT

        service = _service(fetch, concurrency=1)

        stopped = asyncio.run(service.run_scan(self.TICKERS))
        assert stopped["status"] == "stopped"
        assert stopped["processed"] == 1
        assert stopped["detected"] == ["AAA"]
        assert seen == ["AAA", "BBB"]
        assert service.can_resume is True
        assert service.state.resume.next_index == 0
        assert service.get_status().can_resume is True

        resumed = asyncio.run(service.run_scan(resume=True))
        assert resumed["status"] == "completed"
        assert resumed["processed"] == 5
        assert resumed["detected"] == ["AAA", "DDD"]
        assert seen == ["AAA", "BBB", "AAA", "BBB", "CCC", "DDD", "EEE"]
        assert service.can_resume is False

    def test_fresh_scan_discards_resume_state(self):
        service = None

        async def fetch(ticker, days, cancel_event):
            if ticker == "AAA":
                service.request_stop()
            return FLAT

        service = _service(fetch, concurrency=1)
        assert asyncio.run(service.run_scan(self.TICKERS))["status"] == "stopped"

        service.fetch_bars = FakeFetcher({t: FLAT for t in self.TICKERS})
        summary = asyncio.run(service.run_scan(self.TICKERS))
        assert summary["status"] == "completed"
        assert summary["processed"] == 5
        assert service.can_resume is False


class TestDetectOne:
    def test_single_ticker(self):
        service = _service(FakeFetcher({"ASTS": ACCUM}))
        result = asyncio.run(service.detect_one("asts"))
        assert result.ticker == "ASTS"
        assert result.detected is True

    def test_concurrent_request_is_deduplicated(self):
        release = None
        calls = []

        async def fetch(ticker, days, cancel_event):
            calls.append(ticker)
            await release.wait()
            return ACCUM

        service = _service(fetch)

        async def run():
            nonlocal release
            release = asyncio.Event()
            first = asyncio.create_task(service.detect_one("ASTS"))
            await asyncio.sleep(0)
            second = await service.detect_one("ASTS")
            release.set()
            return await first, second

        first, second = asyncio.run(run())
        assert first.detected is True
        assert second.reason == "in_progress"
        assert second.status == "Detection in progress"
        assert calls == ["ASTS"]

        assert service._in_flight == set()
