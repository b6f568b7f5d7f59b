"""Fixed-period firing for the background workers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger("tidy.periodic")


class PeriodicTask:
    """Fires ``fn`` every ``interval`` seconds on a fresh worker thread.

    Each firing runs on its own thread so a slow call never delays the
    cadence; callers guard against overlapping firings themselves.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], object],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval = interval
        self.fn = fn
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=f"{self.name}-loop", daemon=True)
        self._thread.start()
        logger.debug("%s started (every %.1fs)", self.name, self.interval)

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug("%s stopped", self.name)

    def _loop(self) -> None:
        if self.run_immediately:
            self._fire()
        while not self._stop_event.wait(self.interval):
            self._fire()

    def _fire(self) -> None:
        worker = threading.Thread(target=self._call, name=f"{self.name}-tick", daemon=True)
        worker.start()

    def _call(self) -> None:
        try:
            self.fn()
        except Exception:
            logger.exception("%s firing failed", self.name)
