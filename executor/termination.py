"""Two-phase (graceful, then forced) termination of idle applications."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from core.event_bus import EventBus
from core.serial_queue import Scheduler, SerialQueue, start_timer
from executor.undo_registry import SubjectKind, UndoRegistry
from governance.audit_logger import AuditLogger
from os_controller.base_controller import OracleError, RunningApplication, SystemOracle

logger = logging.getLogger("tidy.termination")

DEFAULT_GRACE_SECONDS = 2.0
# How long an auto-quit id stays claimed so lifecycle notifications skip it.
_OWNERSHIP_SECONDS = 60.0


@dataclass(frozen=True)
class TerminationCandidate:
    app: RunningApplication
    windowless_seconds: float

    @property
    def app_id(self) -> str:
        return self.app.app_id


class TerminationExecutor:
    """Issues terminations on the serial queue and escalates once after the grace period."""

    def __init__(
        self,
        oracle: SystemOracle,
        queue: SerialQueue,
        undo_registry: UndoRegistry | None = None,
        event_bus: EventBus | None = None,
        audit_logger: AuditLogger | None = None,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        scheduler: Scheduler = start_timer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.oracle = oracle
        self.queue = queue
        self.undo_registry = undo_registry
        self.event_bus = event_bus
        self.audit_logger = audit_logger
        self.grace_seconds = grace_seconds
        self.scheduler = scheduler
        self.clock = clock
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._owned: dict[str, float] = {}
        self._in_flight = 0

    def request(self, candidate: TerminationCandidate) -> None:
        """Queue a candidate for termination."""
        with self._lock:
            self._owned[candidate.app_id] = self.clock()
            self._in_flight += 1
        if self.queue.submit(self._terminate_gracefully, candidate) is None:
            self._finished()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every requested termination, grace check included, has run."""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout)

    def _finished(self) -> None:
        with self._idle:
            self._in_flight -= 1
            self._idle.notify_all()

    def owns(self, app_id: str) -> bool:
        with self._lock:
            self._prune()
            return app_id in self._owned

    def acknowledge(self, app_id: str) -> bool:
        """Consume a termination notification; True if this executor caused it."""
        with self._lock:
            self._prune()
            return self._owned.pop(app_id, None) is not None

    def _prune(self) -> None:
        cutoff = self.clock() - _OWNERSHIP_SECONDS
        for app_id in [k for k, v in self._owned.items() if v < cutoff]:
            del self._owned[app_id]

    # ── Serial-queue steps ───────────────────────────────────────────

    def _terminate_gracefully(self, candidate: TerminationCandidate) -> None:
        app = candidate.app
        logger.info(
            "Terminating %s after %.0fs with no windows", app.app_id, candidate.windowless_seconds
        )
        try:
            delivered = self.oracle.terminate(app.app_id, force=False)
        except OracleError as exc:
            logger.warning("Graceful terminate of %s failed: %s", app.app_id, exc)
            delivered = False
        self._audit("terminate", app.app_id, "requested" if delivered else "failed")
        # The grace check always runs; a refused quit is escalated like an ignored one.
        self.scheduler(self.grace_seconds, lambda: self._submit_grace_check(candidate))

    def _submit_grace_check(self, candidate: TerminationCandidate) -> None:
        if self.queue.submit(self._check_after_grace, candidate) is None:
            logger.warning("Queue closed, grace check for %s dropped", candidate.app_id)
            self._finished()

    def _check_after_grace(self, candidate: TerminationCandidate) -> None:
        try:
            self._escalate(candidate)
        finally:
            self._finished()

    def _escalate(self, candidate: TerminationCandidate) -> None:
        app = candidate.app
        try:
            still_running = self.oracle.is_running(app.app_id)
        except OracleError as exc:
            logger.warning("Could not confirm %s exited: %s", app.app_id, exc)
            still_running = True

        if still_running:
            logger.info("%s still running after %.1fs, forcing", app.app_id, self.grace_seconds)
            try:
                killed = self.oracle.terminate(app.app_id, force=True)
            except OracleError as exc:
                logger.error("Force terminate of %s failed: %s", app.app_id, exc)
                killed = False
            self._audit("force_terminate", app.app_id, "done" if killed else "failed")
            if not killed:
                # No further escalation.
                with self._lock:
                    self._owned.pop(app.app_id, None)
                return

        self._on_terminated(candidate, forced=still_running)

    def _on_terminated(self, candidate: TerminationCandidate, forced: bool) -> None:
        app = candidate.app
        if self.undo_registry is not None:
            token = self.undo_registry.new_token(
                SubjectKind.PROCESS,
                app.bundle_path or app.app_id,
                app.display_name,
                app_id=app.app_id,
            )
            self.undo_registry.register(token)
        if self.event_bus is not None:
            self.event_bus.emit(
                "app_auto_quit",
                {"app_id": app.app_id, "display_name": app.display_name, "forced": forced},
            )

    def _audit(self, action: str, app_id: str, outcome: str) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action=action, subject=app_id, outcome=outcome)
