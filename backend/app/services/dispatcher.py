"""Non-blocking side-effect dispatch.

Cache writes, audit rows and moderation rows must never slow down or fail an
ingestion response. They are handed to a dispatcher, which runs them off the
response path and logs failures at this boundary.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Protocol

from ingestion.core.log import get_logger

log = get_logger("slots.ingestion.dispatch")


class Dispatcher(Protocol):
    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None: ...

    def drain(self, timeout: float | None = None) -> None: ...


def _run_guarded(label: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as e:  # noqa: BLE001
        log.error("dispatch.failed", task=label, error=str(e), error_type=type(e).__name__)


class BackgroundDispatcher:
    """Thread-pool dispatcher used by the API process."""

    def __init__(self, max_workers: int = 4) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest-side-effect")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        future = self._pool.submit(_run_guarded, label, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.drain()
        self._pool.shutdown(wait=True)


class InlineDispatcher:
    """Runs side effects immediately, with the same failure isolation."""

    def submit(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        _run_guarded(label, fn, args, kwargs)

    def drain(self, timeout: float | None = None) -> None:
        return None
