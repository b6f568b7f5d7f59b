"""Termination notifications: offers undo for apps the user quit by hand."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from core.event_bus import EventBus
from core.periodic import PeriodicTask
from core.serial_queue import SerialQueue
from executor.termination import TerminationExecutor
from executor.undo_registry import SubjectKind, UndoRegistry
from os_controller.base_controller import OracleError, RunningApplication, SystemOracle

logger = logging.getLogger("tidy.lifecycle")


class AppLifecycleWatcher:
    """Diffs the running regular apps between polls and registers undo for vanished ones."""

    def __init__(
        self,
        oracle: SystemOracle,
        undo_registry: UndoRegistry,
        executor: TerminationExecutor | None = None,
        queue: SerialQueue | None = None,
        event_bus: EventBus | None = None,
        ignore_ids: Iterable[str] = (),
        interval: float = 1.0,
    ) -> None:
        self.oracle = oracle
        self.undo_registry = undo_registry
        self.executor = executor
        self.queue = queue
        self.event_bus = event_bus
        self.ignore_ids = frozenset(ignore_ids)
        self.interval = interval
        self._previous: dict[str, RunningApplication] | None = None
        self._guard = threading.Lock()
        self._task: PeriodicTask | None = None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask("lifecycle", self.interval, self.poll)
        self._task.start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            self._task = None
        self._previous = None

    def poll(self) -> list[RunningApplication]:
        """Return the apps reported as terminated by this poll."""
        if not self._guard.acquire(blocking=False):
            return []
        try:
            return self._poll()
        finally:
            self._guard.release()

    def _poll(self) -> list[RunningApplication]:
        try:
            apps = self.oracle.list_running_applications()
        except OracleError as exc:
            logger.warning("Could not list running apps: %s", exc)
            return []

        current = {
            app.app_id: app
            for app in apps
            if app.is_regular and app.app_id not in self.ignore_ids
        }
        previous, self._previous = self._previous, current
        if previous is None:
            return []

        terminated: list[RunningApplication] = []
        for app_id, app in previous.items():
            if app_id in current:
                continue
            if self.executor is not None and self.executor.acknowledge(app_id):
                # Auto-quit; the executor registers its own token.
                continue
            logger.info("App terminated: %s (%s)", app.display_name, app_id)
            token = self.undo_registry.new_token(
                SubjectKind.PROCESS,
                app.bundle_path or app_id,
                app.display_name,
                app_id=app_id,
            )
            if self.queue is not None:
                self.queue.submit(self.undo_registry.register, token)
            else:
                self.undo_registry.register(token)
            if self.event_bus is not None:
                self.event_bus.emit(
                    "app_terminated", {"app_id": app_id, "display_name": app.display_name}
                )
            terminated.append(app)
        return terminated
