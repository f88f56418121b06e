"""
VDF Shared Formatters

Human-readable numbers for proximity signal details and status strings.
"""

from __future__ import annotations

import math


def format_pct(value: float | int, decimals: int = 2, show_sign: bool = True) -> str:
    """Format a value as a percentage with optional sign.

    >>> format_pct(12.345)
    '+12.35%'
    >>> format_pct(-3.1, decimals=1)
    '-3.1%'
    """
    if show_sign and value > 0:
        return f"+{value:.{decimals}f}%"
    return f"{value:.{decimals}f}%"


_SUFFIXES = [
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
]


def format_volume(value: float | int, decimals: int = 0, show_sign: bool = False) -> str:
    """Abbreviate a share volume or delta with K/M/B suffix.

    >>> format_volume(125_400)
    '125K'
    >>> format_volume(-2_500_000, decimals=1)
    '-2.5M'
    >>> format_volume(48_000, show_sign=True)
    '+48K'
    >>> format_volume(950)
    '950'
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "N/A"

    if value < 0:
        sign = "-"
    elif show_sign and value > 0:
        sign = "+"
    else:
        sign = ""
    abs_val = abs(value)

    for threshold, suffix in _SUFFIXES:
        if abs_val >= threshold:
            return f"{sign}{abs_val / threshold:.{decimals}f}{suffix}"

    return f"{sign}{abs_val:.0f}"


def format_ratio(value: float, decimals: int = 1) -> str:
    """Format a multiple such as ``4.3x``.

    >>> format_ratio(4.27)
    '4.3x'
    """
    return f"{value:.{decimals}f}x"
