"""Termination notifications for apps quit outside the scanner."""

from __future__ import annotations

from core.event_bus import EventBus
from core.lifecycle_watcher import AppLifecycleWatcher
from executor.termination import TerminationCandidate, TerminationExecutor
from executor.undo_registry import UndoRegistry
from os_controller.base_controller import OracleError


def test_first_poll_is_baseline_only(oracle, clock) -> None:
    oracle.add_app("com.example.a")
    watcher = AppLifecycleWatcher(oracle, UndoRegistry(oracle, clock=clock))
    assert watcher.poll() == []


def test_vanished_regular_app_gets_undo_token(oracle, clock, queue) -> None:
    bus = EventBus()
    events: list[dict] = []
    bus.subscribe("app_terminated", events.append)
    registry = UndoRegistry(oracle, clock=clock)
    oracle.add_app("com.example.notes", bundle_path="/Applications/Notes.app", display_name="Notes")
    oracle.add_app("com.example.helper", is_regular=False)
    watcher = AppLifecycleWatcher(oracle, registry, queue=queue, event_bus=bus)
    watcher.poll()

    oracle.remove_app("com.example.notes")
    oracle.remove_app("com.example.helper")
    terminated = watcher.poll()

    assert [app.app_id for app in terminated] == ["com.example.notes"]
    assert registry.peek().restore_target == "/Applications/Notes.app"
    assert events == [{"app_id": "com.example.notes", "display_name": "Notes"}]


def test_auto_quit_apps_are_left_to_the_executor(oracle, clock, queue, scheduler) -> None:
    registry = UndoRegistry(oracle, clock=clock)
    executor = TerminationExecutor(oracle, queue, scheduler=scheduler, clock=clock)
    app = oracle.add_app("com.example.idle")
    watcher = AppLifecycleWatcher(oracle, registry, executor=executor)
    watcher.poll()

    executor.request(TerminationCandidate(app=app, windowless_seconds=300.0))

    assert watcher.poll() == []
    assert registry.peek() is None


def test_ignored_ids_and_listing_failures(oracle, clock) -> None:
    registry = UndoRegistry(oracle, clock=clock)
    oracle.add_app("com.example.tidy")
    oracle.add_app("com.example.other")
    watcher = AppLifecycleWatcher(oracle, registry, ignore_ids=["com.example.tidy"])
    watcher.poll()

    oracle.list_error = OracleError("unavailable")
    assert watcher.poll() == []

    oracle.list_error = None
    oracle.remove_app("com.example.tidy")
    assert watcher.poll() == []
    assert registry.peek() is None
