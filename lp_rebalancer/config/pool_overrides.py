"""Load per-pool overrides from YAML.

Optional file path via env `LPR_POOL_OVERRIDES`, default `configs/pools.yaml`.
Returns a dict mapping pool id -> PoolOverride. Recognised keys per pool:
``exclude`` (never open a position there) and ``max_capital`` (tighter
per-position ceiling than the global one).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

log = logging.getLogger("lprebal")


@dataclass(frozen=True)
class PoolOverride:
    exclude: bool = False
    max_capital: Optional[float] = None


def load_pool_overrides(path: str | None = None) -> Dict[str, PoolOverride]:
    if path is None:
        path = os.getenv("LPR_POOL_OVERRIDES", "configs/pools.yaml")
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        log.warning(f"Ignoring unreadable pool overrides {p}: {exc}")
        return {}
    if not isinstance(data, dict):
        return {}

    out: Dict[str, PoolOverride] = {}
    for pool_id, raw in data.items():
        if not isinstance(raw, dict):
            continue
        max_capital = raw.get("max_capital")
        try:
            max_capital = float(max_capital) if max_capital is not None else None
        except (TypeError, ValueError):
            max_capital = None
        out[str(pool_id)] = PoolOverride(exclude=bool(raw.get("exclude", False)), max_capital=max_capital)
    return out
