"""
VDF Alpaca Minute-Bar Client

Fetches 1-minute bars for the detector from the Alpaca market-data v2 API.

Free tier: IEX feed (~8-10% market volume).
Algo Trader Plus ($99/mo): Full SIP feed (100% market coverage).
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import structlog

from vdf.config import Settings, get_settings
from vdf.errors import BarFetchError, DetectionAborted
from vdf.models import MinuteBar
from vdf.utils.circuit_breaker import CircuitBreaker, get_breaker
from vdf.utils.retry import RETRYABLE_STATUS_CODES, with_retry

log = structlog.get_logger(__name__)

_DATA_URL = "https://data.alpaca.markets/v2"
_MAX_PAGES = 500


class AlpacaClient:
    """Minute-bar source backed by the Alpaca data API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings or get_settings()
        self._api_key = self.settings.alpaca_api_key
        self._secret_key = self.settings.alpaca_secret_key
        self._feed = self.settings.alpaca_feed  # 'iex' (free), 'sip' (paid), 'delayed_sip'
        self._headers = {
            "APCA-API-KEY-ID": self._api_key,
            "APCA-API-SECRET-KEY": self._secret_key,
        }
        self._transport = transport
        self._clock = clock
        self._breaker = breaker or get_breaker(
            "alpaca",
            failure_threshold=self.settings.breaker_failure_threshold,
            recovery_timeout=self.settings.breaker_recovery_timeout,
        )
        self._fetch_page_with_retry = with_retry(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay,
        )(self._fetch_page)

    @property
    def _is_configured(self) -> bool:
        return bool(self._api_key and self._secret_key)

    async def get_minute_bars(
        self,
        ticker: str,
        lookback_days: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[MinuteBar]:
        """Fetch every 1-minute bar for ``ticker`` over the last ``lookback_days``.

        Pages through ``next_page_token`` until exhausted. The cancel event is
        checked before each page.

        Raises:
            DetectionAborted: The cancel event was set mid-fetch.
            BarFetchError: The API rejected the request (non-retryable 4xx).
            CircuitOpenError: The data API has been failing; fail fast.
        """
        if not self._is_configured:
            log.warning("alpaca.not_configured", ticker=ticker)
            return []

        symbol = ticker.upper()
        end = self._clock()
        start = end - timedelta(days=lookback_days)
        params: dict[str, Any] = {
            "timeframe": "1Min",
            "start": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "end": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "limit": self.settings.alpaca_page_limit,
            "feed": self._feed,
            "adjustment": "split",
            "sort": "asc",
        }

        bars: list[MinuteBar] = []
        dropped = 0
        pages = 0
        async with httpx.AsyncClient(
            headers=self._headers,
            timeout=self.settings.alpaca_timeout,
            transport=self._transport,
        ) as client:
            page_token: Optional[str] = None
            while pages < _MAX_PAGES:
                if cancel_event is not None and cancel_event.is_set():
                    raise DetectionAborted(symbol, stage="fetch")

                page_params = dict(params)
                if page_token:
                    page_params["page_token"] = page_token

                data = await self._breaker.call(
                    lambda: self._fetch_page_with_retry(client, symbol, page_params)
                )
                pages += 1

                for raw in data.get("bars") or []:
                    bar = parse_bar(raw)
                    if bar is None:
                        dropped += 1
                    else:
                        bars.append(bar)

                page_token = data.get("next_page_token")
                if not page_token:
                    break

        log.debug(
            "alpaca.minute_bars",
            ticker=symbol,
            bars=len(bars),
            dropped=dropped,
            pages=pages,
            lookback_days=lookback_days,
        )
        return bars

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        symbol: str,
        params: dict[str, Any],
    ) -> dict:
        resp = await client.get(f"{_DATA_URL}/stocks/{symbol}/bars", params=params)
        if resp.status_code in RETRYABLE_STATUS_CODES:
            resp.raise_for_status()
        if resp.status_code >= 400:
            raise BarFetchError(symbol, status_code=resp.status_code, detail=resp.text[:200])
        return resp.json()


def parse_bar(raw: dict) -> Optional[MinuteBar]:
    """Convert one API bar (t/o/h/l/c/v) to a MinuteBar.

    Returns None for bars with a missing field or a non-finite value.
    """
    try:
        ts = datetime.fromisoformat(str(raw["t"]).replace("Z", "+00:00")).timestamp()
        values = [float(raw[k]) for k in ("o", "h", "l", "c", "v")]
    except (KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(ts) or not all(math.isfinite(v) for v in values):
        return None
    o, h, l, c, v = values
    return MinuteBar(time=ts, open=o, high=h, low=l, close=c, volume=v)
