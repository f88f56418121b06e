# Shared utilities: statistics, formatters, validators, retry, circuit breaker
from vdf.utils.formatters import format_pct, format_ratio, format_volume
from vdf.utils.stats import clamp, lin_reg, mean, ramp, std
from vdf.utils.validators import validate_ticker, validate_tickers

__all__ = [
    "clamp",
    "format_pct",
    "format_ratio",
    "format_volume",
    "lin_reg",
    "mean",
    "ramp",
    "std",
    "validate_ticker",
    "validate_tickers",
]
