"""
Alpaca Client Tests: minute-bar paging, filtering, retry and breaker behaviour.

HTTP is served by ``httpx.MockTransport``; nothing leaves the process.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from vdf.config import Settings
from vdf.data.alpaca_client import AlpacaClient, parse_bar
from vdf.errors import BarFetchError, DetectionAborted
from vdf.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

NOW = datetime(2024, 6, 3, 20, 0, tzinfo=timezone.utc)


def _settings(**overrides) -> Settings:
    values = dict(
        alpaca_api_key="key",
        alpaca_secret_key="secret",
        retry_max_attempts=3,
        retry_base_delay=0.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client(handler, breaker=None, **overrides) -> AlpacaClient:
    return AlpacaClient(
        settings=_settings(**overrides),
        transport=httpx.MockTransport(handler),
        breaker=breaker or CircuitBreaker("alpaca-test", failure_threshold=5, recovery_timeout=30),
        clock=lambda: NOW,
    )


def _raw_bar(minute: int, close: float = 10.0, volume: float = 100) -> dict:
    return {
        "t": f"2024-06-03T14:{minute:02d}:00Z",
        "o": close - 0.1,
        "h": close + 0.1,
        "l": close - 0.2,
        "c": close,
        "v": volume,
    }


class TestMinuteBars:
    def test_pages_through_next_page_token(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            token = request.url.params.get("page_token")
            if token is None:
                return httpx.Response(200, json={"bars": [_raw_bar(30), _raw_bar(31)], "next_page_token": "p2"})
            assert token == "p2"
            return httpx.Response(200, json={"bars": [_raw_bar(32)], "next_page_token": None})

        bars = asyncio.run(_client(handler).get_minute_bars("asts", 220))

        assert [b.time for b in bars] == [
            datetime(2024, 6, 3, 14, m, tzinfo=timezone.utc).timestamp() for m in (30, 31, 32)
        ]
        assert bars[0].close == 10.0
        assert bars[0].volume == 100
        assert len(requests) == 2

        first = requests[0]
        assert first.url.path == "/v2/stocks/ASTS/bars"
        assert first.url.params["timeframe"] == "1Min"
        assert first.url.params["feed"] == "iex"
        assert first.url.params["start"] == "2023-10-27T20:00:00Z"
        assert first.url.params["end"] == "2024-06-03T20:00:00Z"
        assert first.headers["APCA-API-KEY-ID"] == "key"
        assert first.headers["APCA-API-SECRET-KEY"] == "secret"

    def test_drops_non_finite_and_incomplete_bars(self):
        bad_close = dict(_raw_bar(31), c="nan")
        missing_volume = {k: v for k, v in _raw_bar(32).items() if k != "v"}

        def handler(request):
            return httpx.Response(200, json={"bars": [_raw_bar(30), bad_close, missing_volume, _raw_bar(33)]})

        bars = asyncio.run(_client(handler).get_minute_bars("ASTS", 30))
        assert len(bars) == 2

    def test_empty_response(self):
        def handler(request):
            return httpx.Response(200, json={"bars": None, "next_page_token": None})

        assert asyncio.run(_client(handler).get_minute_bars("ASTS", 30)) == []

    def test_unconfigured_returns_empty(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = _client(handler, alpaca_api_key="", alpaca_secret_key="")
        assert asyncio.run(client.get_minute_bars("ASTS", 30)) == []

    def test_cancel_between_pages(self):
        async def run():
            event = asyncio.Event()

            def handler(request):
                event.set()
                return httpx.Response(200, json={"bars": [_raw_bar(30)], "next_page_token": "p2"})

            return await _client(handler).get_minute_bars("ASTS", 30, cancel_event=event)

        with pytest.raises(DetectionAborted) as exc_info:
            asyncio.run(run())
        assert exc_info.value.ticker == "ASTS"


class TestFailures:
    def test_transient_status_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, json={"message": "unavailable"})
            return httpx.Response(200, json={"bars": [_raw_bar(30)]})

        bars = asyncio.run(_client(handler).get_minute_bars("ASTS", 30))
        assert len(bars) == 1
        assert len(calls) == 2

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(422, json={"message": "invalid symbol"})

        with pytest.raises(BarFetchError) as exc_info:
            asyncio.run(_client(handler).get_minute_bars("ZZZZ", 30))
        assert exc_info.value.status_code == 422
        assert len(calls) == 1

    def test_retries_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(_client(handler, retry_max_attempts=2).get_minute_bars("ASTS", 30))
        assert len(calls) == 2

    def test_breaker_opens_after_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        breaker = CircuitBreaker("alpaca-test", failure_threshold=1, recovery_timeout=60)
        client = _client(handler, breaker=breaker, retry_max_attempts=1)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(client.get_minute_bars("ASTS", 30))
        with pytest.raises(CircuitOpenError):
            asyncio.run(client.get_minute_bars("ASTS", 30))
        assert len(calls) == 1


class TestParseBar:
    def test_parses_rfc3339(self):
        bar = parse_bar({"t": "2024-06-03T14:30:00Z", "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 300})
        assert bar.time == datetime(2024, 6, 3, 14, 30, tzinfo=timezone.utc).timestamp()
        assert bar.high == 2.0

    @pytest.mark.parametrize("raw", [
        {},
        {"t": "not-a-time", "o": 1, "h": 1, "l": 1, "c": 1, "v": 1},
        {"t": "2024-06-03T14:30:00Z", "o": 1, "h": 1, "l": 1, "c": "inf", "v": 1},
        {"t": "2024-06-03T14:30:00Z", "o": 1, "h": 1, "l": 1, "c": None, "v": 1},
    ])
    def test_rejects_bad_bars(self, raw):
        assert parse_bar(raw) is None
