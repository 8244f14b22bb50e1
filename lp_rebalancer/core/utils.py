"""
Utility helpers.
"""

from __future__ import annotations

import math
from decimal import ROUND_DOWN, Decimal
from typing import Any, Iterable, Iterator, List, Sequence, TypeVar

from lp_rebalancer.core.errors import ConfigurationError

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def dedupe(items: Iterable[T]) -> List[T]:
    """Drop duplicates while keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def to_float_safe(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def to_int_safe(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def require_positive_amount(value: Any, what: str = "amount") -> float:
    """Reject non-finite or non-positive amounts as configuration errors."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid {what}: {value!r}") from None
    if not math.isfinite(num) or num <= 0:
        raise ConfigurationError(f"invalid {what}: {value!r}")
    return num


def to_raw_amount(ui_amount: float, decimals: int) -> int:
    """Convert a UI amount into integer base units, rounding down."""
    scaled = Decimal(str(ui_amount)) * (Decimal(10) ** decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_DOWN))


def apply_bps_floor(amount: int, bps: int) -> int:
    """Minimum acceptable output for ``amount`` under ``bps`` slippage."""
    if bps < 0:
        raise ConfigurationError(f"negative slippage bps: {bps}")
    bps = min(bps, 10_000)
    return (amount * (10_000 - bps)) // 10_000


def short_id(value: str, n: int = 8) -> str:
    return value if len(value) <= n else f"{value[:n]}..."
