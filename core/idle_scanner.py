"""Idle-app scanner: quits regular apps that have had no windows for too long.

Each tick runs in three steps:

1. Observe. Ask the oracle for running apps and, for each regular,
   non-whitelisted one, its window count. The results are folded into the
   tracker in one short critical section. A permission failure aborts the
   tick before anything is touched: an app must never be assumed windowless
   just because its windows could not be counted. An app whose count alone
   fails keeps its previous entry and is not considered this tick. The
   persisted whitelist is reloaded first, so edits made from the CLI apply
   on the next tick.
2. Decide. Take a snapshot and, outside the lock, pick entries whose
   windowless time reached the timeout, skipping apps that are playing
   audio. Each pick is dropped from the tracker immediately so it is not
   issued twice.
3. Act. Hand the picks to the termination executor, which runs on the
   serial queue.

A window reappearing between the decision and the actual quit is an
accepted race.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from core.periodic import PeriodicTask
from executor.termination import TerminationCandidate, TerminationExecutor
from governance.whitelist import WhitelistStore
from os_controller.base_controller import (
    OracleError,
    OracleTimeout,
    PermissionUnavailable,
    RunningApplication,
    SystemOracle,
)
from world_model.window_state import ScanSnapshot, WindowStateTracker

logger = logging.getLogger("tidy.scanner")

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_SCAN_INTERVAL = 5.0


@dataclass
class ScanReport:
    """What one tick saw and decided."""

    observed: int = 0
    candidates: list[str] = field(default_factory=list)
    audio_protected: list[str] = field(default_factory=list)
    aborted: bool = False
    reason: str = ""


class ConcurrentScanner:
    """Periodic engine driving the window-state tracker and idle terminations."""

    def __init__(
        self,
        oracle: SystemOracle,
        whitelist: WhitelistStore,
        executor: TerminationExecutor,
        tracker: WindowStateTracker | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        interval: float = DEFAULT_SCAN_INTERVAL,
        protect_audio: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.oracle = oracle
        self.whitelist = whitelist
        self.executor = executor
        self.tracker = tracker or WindowStateTracker()
        self.timeout_seconds = timeout_seconds
        self.interval = interval
        self.protect_audio = protect_audio
        self.clock = clock
        self._tick_guard = threading.Lock()
        self._stopped = False
        # Orders stop() against the check-then-apply in _scan.
        self._state_lock = threading.Lock()
        self._task: PeriodicTask | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        with self._state_lock:
            self._stopped = False
        self._task = PeriodicTask("idle-scanner", self.interval, self.tick)
        self._task.start()
        logger.info(
            "Idle scanner started (timeout %.0fs, every %.1fs)", self.timeout_seconds, self.interval
        )

    def stop(self) -> None:
        """Stop ticking and forget tracked state; armed grace timers still complete."""
        with self._state_lock:
            self._stopped = True
            self.tracker.clear()
        if self._task is not None:
            self._task.stop()
            self._task = None
        logger.info("Idle scanner stopped")

    # ── Tick ─────────────────────────────────────────────────────────

    def tick(self) -> ScanReport | None:
        """Run one scan; returns None when a previous scan is still in flight."""
        if not self._tick_guard.acquire(blocking=False):
            logger.debug("Previous scan still running, skipping this one")
            return None
        try:
            return self._scan()
        finally:
            self._tick_guard.release()

    def _scan(self) -> ScanReport:
        try:
            observations, unknown = self._observe()
        except PermissionUnavailable as exc:
            logger.warning("Missing accessibility permissions. Skipping scan: %s", exc)
            return ScanReport(aborted=True, reason="permission unavailable")
        except OracleError as exc:
            logger.warning("Could not list running apps. Skipping scan: %s", exc)
            return ScanReport(aborted=True, reason=str(exc))

        now = self.clock()
        with self._state_lock:
            if self._stopped:
                # Stopped while observing; do not repopulate the cleared tracker.
                return ScanReport(aborted=True, reason="stopped")
            self.tracker.apply(observations, now, keep=unknown)
        report = ScanReport(observed=len(observations))

        snapshot = self.tracker.snapshot(now)
        candidates = self._select(snapshot, report, unknown)
        for candidate in candidates:
            self.executor.request(candidate)
        return report

    def _observe(self) -> tuple[dict[str, tuple[RunningApplication, int]], set[str]]:
        """Collect window counts without holding the tracker lock."""
        observations: dict[str, tuple[RunningApplication, int]] = {}
        unknown: set[str] = set()
        apps = self.oracle.list_running_applications()
        self.whitelist.refresh()
        for app in apps:
            if not app.is_regular or self.whitelist.is_whitelisted(app.app_id):
                continue
            try:
                count = self.oracle.window_count(app.app_id)
            except OracleTimeout:
                logger.debug("Window count timed out for %s", app.app_id)
                unknown.add(app.app_id)
                continue
            except PermissionUnavailable:
                raise
            except OracleError as exc:
                logger.warning("Window count failed for %s, skipping it: %s", app.app_id, exc)
                unknown.add(app.app_id)
                continue
            if app.app_id in observations:
                # Several instances share one identifier; any window keeps them all.
                count += observations[app.app_id][1]
            observations[app.app_id] = (app, count)
        return observations, unknown.difference(observations)

    def _select(
        self, snapshot: ScanSnapshot, report: ScanReport, unknown: set[str]
    ) -> list[TerminationCandidate]:
        candidates: list[TerminationCandidate] = []
        now = snapshot.taken_at
        for app_id, state in snapshot.states.items():
            if app_id in unknown:
                # Window state this tick is unknown; never act on the stale entry.
                continue
            elapsed = state.windowless_for(now)
            if elapsed is None:
                continue
            if not state.should_timeout(self.timeout_seconds, now):
                logger.debug("%s waiting... %d/%ds", app_id, elapsed, self.timeout_seconds)
                continue

            app = snapshot.apps.get(app_id)
            if app is None or not app.is_regular or self.whitelist.is_whitelisted(app_id):
                continue
            if self.protect_audio and self._is_playing_audio(app_id):
                logger.debug("%s is playing audio, keeping it alive", app_id)
                report.audio_protected.append(app_id)
                continue

            if self.tracker.discard_if_unchanged(state):
                candidates.append(TerminationCandidate(app=app, windowless_seconds=elapsed))
                report.candidates.append(app_id)
        return candidates

    def _is_playing_audio(self, app_id: str) -> bool:
        try:
            return self.oracle.is_playing_audio(app_id)
        except OracleError as exc:
            # Unknown playback state counts as playing.
            logger.debug("Audio check failed for %s: %s", app_id, exc)
            return True
