"""Shared fakes: a scriptable oracle, a manual clock, an inline queue and scheduler."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

import pytest

from os_controller.base_controller import (
    PermissionUnavailable,
    RunningApplication,
    SystemOracle,
)


class FakeOracle(SystemOracle):
    """In-memory oracle whose answers are set directly by the test."""

    def __init__(self) -> None:
        self.apps: list[RunningApplication] = []
        self.window_counts: dict[str, int] = {}
        self.window_errors: dict[str, Exception] = {}
        self.playing: set[str] = set()
        self.audio_error: Exception | None = None
        self.running: set[str] | None = None
        self.permission_denied = False
        self.list_error: Exception | None = None
        self.window_paths: list[str] = []
        self.enumeration_error: Exception | None = None
        self.ignore_graceful: set[str] = set()
        self.force_fails: set[str] = set()
        self.terminate_calls: list[tuple[str, bool]] = []
        self.launched: list[str] = []
        self.opened: list[str] = []
        self.restore_ok = True

    def add_app(self, app_id: str, windows: int = 1, **kwargs: Any) -> RunningApplication:
        kwargs.setdefault("display_name", app_id.rsplit(".", 1)[-1].title())
        app = RunningApplication(app_id=app_id, **kwargs)
        self.apps.append(app)
        self.window_counts[app_id] = windows
        return app

    def remove_app(self, app_id: str) -> None:
        self.apps = [a for a in self.apps if a.app_id != app_id]
        self.window_counts.pop(app_id, None)

    def list_running_applications(self) -> list[RunningApplication]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.apps)

    def window_count(self, app_id: str) -> int:
        if self.permission_denied:
            raise PermissionUnavailable("accessibility not granted")
        if app_id in self.window_errors:
            raise self.window_errors[app_id]
        return self.window_counts.get(app_id, 0)

    def is_playing_audio(self, app_id: str) -> bool:
        if self.audio_error is not None:
            raise self.audio_error
        return app_id in self.playing

    def terminate(self, app_id: str, force: bool = False) -> bool:
        self.terminate_calls.append((app_id, force))
        if force:
            if app_id in self.force_fails:
                return False
            self.remove_app(app_id)
            return True
        if app_id not in self.ignore_graceful:
            self.remove_app(app_id)
        return True

    def is_running(self, app_id: str) -> bool:
        if self.running is not None:
            return app_id in self.running
        return any(a.app_id == app_id for a in self.apps)

    def enumerate_window_paths(self, host_id: str) -> list[str]:
        if self.enumeration_error is not None:
            raise self.enumeration_error
        return list(self.window_paths)

    def resolve_path_by_title(self, title: str, timeout: float = 3.0) -> str | None:
        return None

    def launch_application(self, location: str) -> bool:
        self.launched.append(location)
        return self.restore_ok

    def open_location(self, path: str) -> bool:
        self.opened.append(path)
        return self.restore_ok


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InlineQueue:
    """SerialQueue stand-in that runs work on the calling thread."""

    def __init__(self) -> None:
        self.submitted: list[str] = []

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        self.submitted.append(getattr(fn, "__name__", repr(fn)))
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None


class ManualScheduler:
    """Records armed timers; the test fires them explicitly."""

    def __init__(self) -> None:
        self.pending: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay: float, fn: Callable[[], None]) -> None:
        self.pending.append((delay, fn))

    def fire_all(self) -> int:
        pending, self.pending = self.pending, []
        for _, fn in pending:
            fn()
        return len(pending)


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1000.0)


@pytest.fixture
def queue() -> InlineQueue:
    return InlineQueue()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
