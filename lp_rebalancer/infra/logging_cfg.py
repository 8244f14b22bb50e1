"""
Structured logging for the rebalancing engine.

Every component logs one JSON object per event via ``log_event``. The console
gets a rich rendering of that line, the log file gets a flattened JSON record
written from a background thread so the event loop never waits on disk, and
noisy per-venue / per-request warnings are rate limited per key.
"""

from __future__ import annotations

import atexit
import json
import logging
import queue
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from rich.logging import RichHandler


CRITICAL_SAFETY = logging.CRITICAL  # Capital invariant breaches, unconfirmed submissions
ERROR = logging.ERROR               # Item failures, precondition failures
WARNING = logging.WARNING           # Retries, venue quote failures
INFO = logging.INFO                 # Cycle lifecycle, item outcomes
DEBUG = logging.DEBUG               # Per-venue quotes, request payloads

# event -> (cooldown seconds, fields that make up the throttle key)
DEFAULT_THROTTLES: Dict[str, Tuple[float, Tuple[str, ...]]] = {
    "venue_quote_failed": (30.0, ("venue",)),
    "http_retry": (15.0, ("method", "op", "status")),
    "notify_failed": (60.0, ()),
    "decimals_lookup_failed": (300.0, ("asset",)),
}


def parse_event(message: str) -> Optional[Dict[str, Any]]:
    """The event payload of a ``log_event`` line, or None for plain text."""
    if not message.startswith("{"):
        return None
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) and "event" in data else None


class EventJsonFormatter(logging.Formatter):
    """One flat JSON object per record; event fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        out: Dict[str, Any] = {
            "ts": round(record.created, 3),
            "ts_iso": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        event = parse_event(message)
        if event is None:
            out["msg"] = message
        else:
            for key, value in event.items():
                out.setdefault(key, value)
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, separators=(",", ":"), default=str)


class BackgroundFileHandler(logging.Handler):
    """
    Hands records to a writer thread through a bounded queue.

    When the queue is full the record is counted and dropped; the count is
    reported on close.
    """

    def __init__(self, path: str, max_pending: int = 10_000) -> None:
        super().__init__()
        self._file = logging.FileHandler(path, encoding="utf-8")
        self._pending: "queue.Queue[Optional[logging.LogRecord]]" = queue.Queue(maxsize=max_pending)
        self.dropped = 0
        self._closed = False
        self._writer = threading.Thread(target=self._drain, name="lprebal-log-writer", daemon=True)
        self._writer.start()
        atexit.register(self.close)

    def setFormatter(self, fmt: Optional[logging.Formatter]) -> None:
        super().setFormatter(fmt)
        self._file.setFormatter(fmt)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._pending.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def _drain(self) -> None:
        while True:
            record = self._pending.get()
            if record is None:
                break
            try:
                self._file.emit(record)
            except Exception:
                self._file.handleError(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Sentinel goes in with a blocking put so it is never dropped.
        self._pending.put(None)
        self._writer.join(timeout=2.0)
        if self.dropped:
            sys.stderr.write(f"[lprebal] {self.dropped} log records dropped (writer queue full)\n")
        self._file.close()
        super().close()


class EventThrottle(logging.Filter):
    """
    Rate limits selected events. The first record for a key passes; repeats
    within the event's cooldown are suppressed. The key is the event name
    plus the configured fields, so one failing venue does not mute another.
    """

    def __init__(
        self,
        throttles: Optional[Mapping[str, Tuple[float, Tuple[str, ...]]]] = None,
        clock=time.monotonic,
    ) -> None:
        super().__init__()
        self._throttles = dict(DEFAULT_THROTTLES if throttles is None else throttles)
        self._clock = clock
        self._last: Dict[Tuple[Any, ...], float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        event = parse_event(record.getMessage())
        if event is None:
            return True
        rule = self._throttles.get(event["event"])
        if rule is None:
            return True
        cooldown, fields = rule
        key = (event["event"], *(str(event.get(f, "")) for f in fields))
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < cooldown:
            return False
        self._last[key] = now
        return True


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def build_logger(
    name: str = "lprebal",
    level: int | str = logging.INFO,
    file_path: Optional[str] = "lprebal.log",
    background_file: bool = True,
    throttle: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """
    Configure the engine logger once; later calls only adjust the level.

    Args:
        level: Minimum level, as a number or a name such as "DEBUG"
        file_path: JSON log file, None to log to the console only
        background_file: Write the file from a background thread
        throttle: Rate limit noisy events on the console
        rich_console: Rich console rendering; JSON lines on stdout otherwise
    """
    level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    console: logging.Handler
    if rich_console:
        console = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        console.setFormatter(logging.Formatter("%(message)s"))
    else:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(EventJsonFormatter())
    if throttle:
        console.addFilter(EventThrottle())
    handlers = [console]

    if file_path:
        file_handler: logging.Handler = (
            BackgroundFileHandler(file_path) if background_file else logging.FileHandler(file_path, encoding="utf-8")
        )
        file_handler.setFormatter(EventJsonFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data: Any) -> None:
    """
    Log one structured event.

        log_event(log, "zap_out_done", pool="5Upb...", venue="router")
    """
    logger.log(level, json.dumps({"event": event, **data}, default=str))
