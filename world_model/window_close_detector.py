"""Infers closed file-manager windows from successive window enumerations."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import PurePosixPath

from core.event_bus import EventBus
from core.periodic import PeriodicTask
from core.serial_queue import SerialQueue
from executor.undo_registry import SubjectKind, UndoRegistry
from os_controller.base_controller import OracleError, SystemOracle
from os_controller.path_resolver import is_placeholder_path

logger = logging.getLogger("tidy.window_close")

DEFAULT_HOST_ID = "com.apple.finder"
DEFAULT_POLL_SECONDS = 1.0


@dataclass(frozen=True)
class EnumerationSnapshot:
    ordered_paths: tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.ordered_paths)


@dataclass(frozen=True)
class WindowCloseEvent:
    path: str
    display_name: str
    restorable: bool
    previous_count: int
    current_count: int


class WindowCloseDetector:
    """Count-diff heuristic over the host's ordered window list.

    When the count drops, the closure is attributed to the last entry of the
    previous list. Enumeration order only says which window was tracked most
    recently, not which one closed, so with several windows showing the same
    location (or closing two at once) the guess can be wrong. That is the
    accepted limit of the heuristic.
    """

    def __init__(
        self,
        oracle: SystemOracle,
        undo_registry: UndoRegistry,
        queue: SerialQueue | None = None,
        event_bus: EventBus | None = None,
        host_id: str = DEFAULT_HOST_ID,
        host_name: str = "Finder",
        interval: float = DEFAULT_POLL_SECONDS,
    ) -> None:
        self.oracle = oracle
        self.undo_registry = undo_registry
        self.queue = queue
        self.event_bus = event_bus
        self.host_id = host_id
        self.host_name = host_name
        self.interval = interval
        self._previous = EnumerationSnapshot()
        self._guard = threading.Lock()
        self._task: PeriodicTask | None = None

    @property
    def previous(self) -> EnumerationSnapshot:
        return self._previous

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask("window-close", self.interval, self.detect)
        self._task.start()
        logger.info("Window close detector started for %s", self.host_id)

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            self._task = None
        self._previous = EnumerationSnapshot()
        logger.info("Window close detector stopped")

    def detect(self) -> WindowCloseEvent | None:
        if not self._guard.acquire(blocking=False):
            return None
        try:
            return self._detect()
        finally:
            self._guard.release()

    def _detect(self) -> WindowCloseEvent | None:
        try:
            paths = self.oracle.enumerate_window_paths(self.host_id)
        except OracleError as exc:
            # A failed enumeration must not read as "every window closed".
            logger.warning("Could not enumerate %s windows: %s", self.host_name, exc)
            return None

        current = EnumerationSnapshot(tuple(paths))
        previous, self._previous = self._previous, current
        if current.count != previous.count:
            logger.debug("%s windows: %d -> %d", self.host_name, previous.count, current.count)

        if current.count >= previous.count:
            return None

        closed = previous.ordered_paths[-1]
        event = WindowCloseEvent(
            path=closed,
            display_name=f"{self.host_name}: {self._label(closed)}",
            restorable=not is_placeholder_path(closed),
            previous_count=previous.count,
            current_count=current.count,
        )
        logger.info("Detected closed %s window: %s", self.host_name, closed)
        self._register(event)
        return event

    def _register(self, event: WindowCloseEvent) -> None:
        token = self.undo_registry.new_token(
            SubjectKind.LOCATION,
            event.path,
            event.display_name,
            restorable=event.restorable,
            app_id=self.host_id,
        )
        if self.queue is not None:
            self.queue.submit(self.undo_registry.register, token)
        else:
            self.undo_registry.register(token)
        if self.event_bus is not None:
            self.event_bus.emit("window_closed", {"event": event})

    @staticmethod
    def _label(path: str) -> str:
        return PurePosixPath(path).name or path
