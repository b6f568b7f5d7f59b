"""Serialized execution context for process-lifecycle side effects."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger("tidy.serial_queue")

Scheduler = Callable[[float, Callable[[], None]], Any]


def start_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    """Arm a one-shot daemon timer."""
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class SerialQueue:
    """Runs submitted callables one at a time, in submission order."""

    def __init__(self, name: str = "tidy-serial") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Queue ``fn``; late submissions after shutdown (e.g. from grace timers) are dropped."""
        if self._closed:
            logger.debug("Queue closed, dropping %s", getattr(fn, "__name__", fn))
            return None
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            logger.debug("Queue closed, dropping %s", getattr(fn, "__name__", fn))
            return None
        future.add_done_callback(self._log_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Serialized task failed: %s", exc, exc_info=exc)
