"""Structured event logging for the ingestion engine.

One JSON object per line on the `slots.ingestion` logger. Sensitive keys are
redacted recursively before serialization so API keys and bearer tokens never
reach a log drain.
"""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

SERVICE_NAME = "slot-ingestion"

REDACT_KEYS = frozenset(
    {"apikey", "api_key", "token", "password", "secret", "authorization", "service_role_key"}
)
REDACTED = "[REDACTED]"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        clean: dict[str, Any] = {}
        for key, item in value.items():
            if str(key).lower() in REDACT_KEYS:
                clean[key] = REDACTED
            else:
                clean[key] = redact(item)
        return clean
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def format_entry(level: str, event: str, data: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "service": SERVICE_NAME,
        "event": event,
    }
    entry.update(redact(dict(data or {})))
    return entry


class Timer:
    """Started by `EventLogger.timer`; `end()` logs `<event>.completed`."""

    def __init__(self, log: "EventLogger", event: str) -> None:
        self._log = log
        self._event = event
        self._start = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def end(self, **data: Any) -> int:
        duration_ms = self.elapsed_ms()
        self._log.info(f"{self._event}.completed", **data, duration_ms=duration_ms)
        return duration_ms


class EventLogger:
    def __init__(self, name: str = "slots.ingestion") -> None:
        self._logger = logging.getLogger(name)
        level = os.environ.get("LOG_LEVEL")
        if level:
            self._logger.setLevel(_LEVELS.get(level.lower(), logging.INFO))

    def _emit(self, level: str, event: str, data: Mapping[str, Any]) -> None:
        lvl = _LEVELS[level]
        if not self._logger.isEnabledFor(lvl):
            return
        entry = format_entry("warn" if level == "warning" else level, event, data)
        self._logger.log(lvl, json.dumps(entry, ensure_ascii=False, default=str))

    def debug(self, event: str, **data: Any) -> None:
        self._emit("debug", event, data)

    def info(self, event: str, **data: Any) -> None:
        self._emit("info", event, data)

    def warning(self, event: str, **data: Any) -> None:
        self._emit("warning", event, data)

    def error(self, event: str, **data: Any) -> None:
        self._emit("error", event, data)

    def timer(self, event: str) -> Timer:
        return Timer(self, event)


def get_logger(name: str = "slots.ingestion") -> EventLogger:
    return EventLogger(name)
