"""
Trace context for one rebalancing cycle.

A cycle owns a trace id. Each zap-out or position open inside it runs under a
child context whose lines carry both its own id and the cycle's, so one item
can be followed through retries and confirmation polling.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from lp_rebalancer.infra.logging_cfg import log_event

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def new_trace_id() -> str:
    return uuid.uuid4().hex[:16]


class CycleContext:
    def __init__(
        self,
        wallet: str,
        trace_id: Optional[str] = None,
        parent_trace_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        self.wallet = wallet
        self.trace_id = trace_id or new_trace_id()
        self.parent_trace_id = parent_trace_id
        self.logger = logger or logging.getLogger("lprebal")
        self.fields: Dict[str, Any] = dict(fields or {})
        self._started = time.monotonic()

    def set_tag(self, key: str, value: Any) -> None:
        """Attach a field to every later line from this context."""
        self.fields[key] = value

    def log(self, event: str, level: str = "info", **data: Any) -> None:
        payload: Dict[str, Any] = {"trace_id": self.trace_id, "wallet": self.wallet}
        if self.parent_trace_id:
            payload["parent_trace_id"] = self.parent_trace_id
        payload["elapsed_ms"] = round(self.elapsed_ms(), 1)
        payload.update(self.fields)
        payload.update(data)
        log_event(self.logger, event, level=_LEVELS.get(level, logging.INFO), **payload)

    def debug(self, event: str, **data: Any) -> None:
        self.log(event, "debug", **data)

    def info(self, event: str, **data: Any) -> None:
        self.log(event, "info", **data)

    def warning(self, event: str, **data: Any) -> None:
        self.log(event, "warning", **data)

    def error(self, event: str, **data: Any) -> None:
        self.log(event, "error", **data)

    def child(self, operation: str, **fields: Any) -> "CycleContext":
        """Context for one item of a phase, e.g. ``ctx.child("zap_out", pool=pool_id)``."""
        return CycleContext(
            self.wallet,
            parent_trace_id=self.trace_id,
            logger=self.logger,
            fields={"operation": operation, **fields},
        )

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000.0
