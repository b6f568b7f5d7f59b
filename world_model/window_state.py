"""Per-application window state machine and the lock-guarded tracker."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from os_controller.base_controller import RunningApplication


@dataclass
class WindowState:
    """Window presence of one app.

    ``last_window_closed_at`` is set on a windows→no-windows transition and
    cleared when windows come back, so it is non-null exactly while the app
    sits in ``NoWindows(since)``.
    """

    app_id: str
    has_windows: bool = True
    last_window_closed_at: float | None = None

    @classmethod
    def first_seen(cls, app_id: str, has_windows: bool, now: float) -> WindowState:
        return cls(app_id=app_id, has_windows=has_windows, last_window_closed_at=None if has_windows else now)

    def update(self, has_windows: bool, now: float) -> None:
        if self.has_windows and not has_windows:
            self.last_window_closed_at = now
        elif not self.has_windows and has_windows:
            self.last_window_closed_at = None
        self.has_windows = has_windows

    def windowless_for(self, now: float) -> float | None:
        if self.has_windows or self.last_window_closed_at is None:
            return None
        return now - self.last_window_closed_at

    def should_timeout(self, timeout_seconds: float, now: float) -> bool:
        elapsed = self.windowless_for(now)
        return elapsed is not None and elapsed >= timeout_seconds


@dataclass(frozen=True)
class ScanSnapshot:
    """Immutable copy of the tracked map, safe to read without the lock."""

    states: Mapping[str, WindowState]
    apps: Mapping[str, RunningApplication]
    taken_at: float

    def __len__(self) -> int:
        return len(self.states)


class WindowStateTracker:
    """Owns the app_id → WindowState map; every mutation happens under its lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, WindowState] = {}
        self._apps: dict[str, RunningApplication] = {}

    def apply(
        self,
        observations: Mapping[str, tuple[RunningApplication, int]],
        now: float,
        keep: Iterable[str] = (),
    ) -> None:
        """Fold one scan's window counts into the map in a single critical section.

        Entries absent from ``observations`` (quit or now whitelisted) are
        dropped; ids in ``keep`` had a failed lookup and are left untouched.
        """
        retained = set(keep)
        with self._lock:
            for app_id, (app, count) in observations.items():
                has_windows = count > 0
                state = self._states.get(app_id)
                if state is None:
                    self._states[app_id] = WindowState.first_seen(app_id, has_windows, now)
                else:
                    state.update(has_windows, now)
                self._apps[app_id] = app

            for app_id in list(self._states):
                if app_id not in observations and app_id not in retained:
                    del self._states[app_id]
                    self._apps.pop(app_id, None)

    def snapshot(self, now: float) -> ScanSnapshot:
        with self._lock:
            states = {k: replace(v) for k, v in self._states.items()}
            apps = dict(self._apps)
        return ScanSnapshot(
            states=MappingProxyType(states),
            apps=MappingProxyType(apps),
            taken_at=now,
        )

    def discard_if_unchanged(self, state: WindowState) -> bool:
        """Drop an entry only if it still matches the snapshot copy it was judged on."""
        with self._lock:
            current = self._states.get(state.app_id)
            if current is None or current != state:
                return False
            del self._states[state.app_id]
            self._apps.pop(state.app_id, None)
            return True

    def discard(self, app_id: str) -> None:
        with self._lock:
            self._states.pop(app_id, None)
            self._apps.pop(app_id, None)

    def get(self, app_id: str) -> WindowState | None:
        with self._lock:
            state = self._states.get(app_id)
            return replace(state) if state else None

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._apps.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
