"""
VDF command line: ``vdf-detect``

    vdf-detect --bars-file bars.json --tickers ASTS
    vdf-detect --tickers ASTS RKLB HUT --mode chart --json

With ``--bars-file`` the detector runs on a JSON array of minute bars (either
``time/open/high/low/close/volume`` or the Alpaca ``t/o/h/l/c/v`` keys).
Otherwise bars are fetched from Alpaca and the tickers run as a batch scan.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

import structlog
from pydantic import ValidationError

from vdf.config import get_settings
from vdf.data.alpaca_client import parse_bar
from vdf.engines.vdf_engine import VDFEngine
from vdf.logging_config import configure_logging
from vdf.models import DetectionMode, DetectionResult, MinuteBar
from vdf.services.scan_service import VDFScanService
from vdf.utils.formatters import format_pct
from vdf.utils.validators import validate_tickers

log = structlog.get_logger("vdf.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2


def load_bars(path: Path) -> list[MinuteBar]:
    """Read minute bars from a JSON file.

    Raises:
        ValueError: The file is not a JSON array of bar objects.
    """
    raw = json.loads(path.read_text())
    if not isinstance(raw, list):
        raise ValueError("bars file must contain a JSON array")

    bars = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("every bar must be a JSON object")
        if "t" in item:
            bar = parse_bar(item)
            if bar is not None:
                bars.append(bar)
        else:
            bars.append(MinuteBar(**item))
    return bars


def render(result: DetectionResult) -> str:
    lines = [f"{result.ticker}: {result.status}"]
    for zone in result.zones:
        lines.append(
            f"  zone {zone.rank}: {zone.start_date} -> {zone.end_date} "
            f"score {zone.score:.2f}, {zone.weeks}wk, "
            f"price {format_pct(zone.overall_price_change, decimals=1)}, "
            f"delta {format_pct(zone.net_delta_pct, decimals=1)}"
        )
    for cluster in result.distribution:
        lines.append(
            f"  distribution: {cluster.start_date} -> {cluster.end_date} "
            f"price {format_pct(cluster.price_change_pct, decimals=1)}, "
            f"delta {format_pct(cluster.net_delta_pct, decimals=1)}"
        )
    for signal in result.proximity.signals:
        lines.append(f"  proximity {signal.type} (+{signal.points}): {signal.detail}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vdf-detect",
        description="Detect hidden accumulation (Volume Divergence Flag) from 1-minute bars",
    )
    parser.add_argument(
        "--bars-file",
        type=Path,
        help="JSON array of minute bars to run the detector on",
    )
    parser.add_argument(
        "--tickers",
        nargs="+",
        default=[],
        help="Ticker symbols to scan (with --bars-file: the label for the file's ticker)",
    )
    parser.add_argument(
        "--mode",
        default=DetectionMode.SCAN.value,
        choices=[m.value for m in DetectionMode],
        help="scan = last 180 days, chart = full fetched history (default: scan)",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    mode = DetectionMode(args.mode)

    try:
        tickers = validate_tickers(args.tickers)
    except ValueError as exc:
        log.error("cli.bad_ticker", error=str(exc))
        return EXIT_BAD_INPUT

    if args.bars_file is not None:
        try:
            bars = load_bars(args.bars_file)
        except (OSError, ValueError, ValidationError, TypeError) as exc:
            log.error("cli.bad_bars_file", path=str(args.bars_file), error=str(exc))
            return EXIT_BAD_INPUT
        ticker = tickers[0] if tickers else args.bars_file.stem.upper()
        results = [VDFEngine(settings).detect(ticker, bars, mode=mode)]
    else:
        if not tickers:
            log.error("cli.no_input", detail="pass --bars-file or --tickers")
            return EXIT_BAD_INPUT
        service = VDFScanService(settings=settings, mode=mode)
        summary = asyncio.run(service.run_scan(tickers))
        log.info("cli.scan_complete", **summary)
        if summary["status"] == "failed":
            return EXIT_FAILED
        results = [service.results[t] for t in tickers if t in service.results]

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
    else:
        for result in results:
            print(render(result))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
