"""
Structured logging setup for the strategy core.

Every component logs one JSON object per event (`{"event": ..., ...}`) on the
"movecatcher" logger. This module turns those into:

- a rich console (or flat JSON lines on stdout when rich output is unwanted)
- a JSON-lines file written from a background thread, so a slow disk never
  stretches a cycle
- per (event, system, reason) throttling for events that can fire every tick
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
from typing import Any, Callable, Dict, Iterable, Optional

from rich.logging import RichHandler

DEFAULT_THROTTLED_EVENTS = frozenset({"gate_denied", "order_retry", "venue_error"})

_STOP = object()


def event_payload(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    """The structured payload of a record, or None for plain-text messages."""
    try:
        data = json.loads(record.getMessage())
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line. Structured event payloads are merged into the
    line; plain messages land under "msg".
    """

    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        payload = event_payload(record)
        if payload is None:
            line["msg"] = record.getMessage()
        else:
            line.update(payload)
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, separators=(",", ":"), default=str)


class AsyncQueueHandler(logging.Handler):
    """
    Hand records to a writer thread that feeds `target`.

    emit() never blocks: when the queue is full the record is counted as
    dropped. close() drains what is queued before closing the target.
    """

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000) -> None:
        super().__init__()
        self.target = target
        self.dropped = 0
        self._records: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._closed = False
        self._writer = threading.Thread(target=self._drain, name="movecatcher-log-writer", daemon=True)
        self._writer.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._records.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def _drain(self) -> None:
        while True:
            record = self._records.get()
            if record is _STOP:
                return
            try:
                self.target.handle(record)
            except Exception:
                self.target.handleError(record)

    def flush(self) -> None:
        # wait until the writer has caught up with everything queued so far
        deadline = time.monotonic() + 2.0
        while not self._records.empty() and time.monotonic() < deadline:
            time.sleep(0.01)
        self.target.flush()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._records.put(_STOP)
        self._writer.join(timeout=2.0)
        if self.dropped:
            sys.stderr.write(f"[movecatcher] {self.dropped} log records dropped (queue full)\n")
        self.target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Pass the first record of a noisy event, then drop repeats with the same
    (event, system, reason) until `cooldown_sec` has passed.
    """

    def __init__(
        self,
        cooldown_sec: float = 30.0,
        throttled_events: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.cooldown_sec = cooldown_sec
        self.events = frozenset(throttled_events or DEFAULT_THROTTLED_EVENTS)
        self._clock = clock
        self._last: Dict[tuple, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        payload = event_payload(record)
        if payload is None or payload.get("event") not in self.events:
            return True
        key = (payload["event"], payload.get("system", ""), payload.get("reason", ""))
        now = self._clock()
        previous = self._last.get(key)
        if previous is not None and now - previous < self.cooldown_sec:
            return False
        self._last[key] = now
        return True


def _console_handler(rich_console: bool) -> logging.Handler:
    if rich_console:
        handler: logging.Handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    return handler


def _file_handler(file_path: str, async_file: bool) -> logging.Handler:
    handler = logging.FileHandler(file_path, encoding="utf-8")
    handler.setFormatter(JsonFormatter())
    if async_file:
        return AsyncQueueHandler(handler)
    return handler


def build_logger(
    name: str = "movecatcher",
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    async_file: bool = True,
    throttle_warnings: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """
    Configure and return the named logger.

    Calling it again for a logger that already has handlers only changes the
    level, so hosts can call it freely.

    Args:
        name: Logger name
        level: Minimum level for the logger and all of its handlers
        file_path: JSON-lines log file; None for console only
        async_file: Write the file from a background thread
        throttle_warnings: Throttle noisy events on the console
        rich_console: rich output; False writes JSON lines to stdout
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    console = _console_handler(rich_console)
    if throttle_warnings:
        console.addFilter(ThrottledFilter())
    handlers = [console]
    if file_path:
        handlers.append(_file_handler(file_path, async_file))

    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data: Any) -> None:
    """
    Log a structured event.

    Usage:
        log_event(log, "order_submitted", system="A", ticket=42)
    """
    logger.log(level, json.dumps({"event": event, **data}, default=str))
