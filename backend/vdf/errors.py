"""
VDF Exceptions

The detector itself never raises for bad data; it returns an empty result
with an ``insufficient_*`` reason. These exceptions belong to the fetch and
scan layers around it.
"""

from __future__ import annotations


class VDFError(Exception):
    """Base class for VDF errors."""


class DetectionAborted(VDFError):
    """Raised when the cancellation token fires during a fetch or scan.

    Callers must be able to tell "request was cancelled" apart from
    "not enough history", so this is never folded into a result.
    """

    def __init__(self, ticker: str | None = None, stage: str = "fetch"):
        self.ticker = ticker
        self.stage = stage
        target = f" for '{ticker}'" if ticker else ""
        super().__init__(f"Detection aborted during {stage}{target}")


class BarFetchError(VDFError):
    """Non-retryable failure from the minute-bar data source."""

    def __init__(self, ticker: str, status_code: int | None = None, detail: str = ""):
        self.ticker = ticker
        self.status_code = status_code
        self.detail = detail
        code = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Bar fetch failed for '{ticker}'{code}: {detail}".rstrip(": "))
