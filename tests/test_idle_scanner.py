"""Idle scanner tests driven by a fake oracle and a manual clock."""

from __future__ import annotations

from pathlib import Path

from core.idle_scanner import ConcurrentScanner
from executor.termination import TerminationExecutor
from governance.whitelist import WhitelistStore
from os_controller.base_controller import OracleError, OracleTimeout
from persistence.preferences import Preferences
from persistence.sql_store import SQLStore


def _build(oracle, clock, queue, scheduler, whitelist=None, **kwargs):
    executor = TerminationExecutor(oracle, queue, scheduler=scheduler, clock=clock)
    scanner = ConcurrentScanner(
        oracle,
        whitelist or WhitelistStore(),
        executor,
        clock=clock,
        **kwargs,
    )
    return scanner, executor


def test_permission_failure_leaves_state_untouched(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.editor", windows=0)
    oracle.add_app("com.example.browser", windows=2)
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()
    before = dict(scanner.tracker.snapshot(clock()).states)

    oracle.permission_denied = True
    oracle.window_counts["com.example.browser"] = 0
    clock.advance(120)
    report = scanner.tick()

    assert report.aborted is True
    assert report.reason == "permission unavailable"
    assert dict(scanner.tracker.snapshot(clock()).states) == before
    assert oracle.terminate_calls == []


def test_listing_failure_aborts_without_mutation(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.editor", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler)
    scanner.tick()
    oracle.list_error = OracleError("System Events not responding")

    report = scanner.tick()

    assert report.aborted is True
    assert len(scanner.tracker) == 1


def test_whitelisted_and_background_apps_are_never_candidates(oracle, clock, queue, scheduler) -> None:
    whitelist = WhitelistStore()
    whitelist.add("com.spotify.client")
    oracle.add_app("com.apple.finder", windows=0)
    oracle.add_app("com.spotify.client", windows=0)
    oracle.add_app("com.example.agent", windows=0, is_regular=False)
    oracle.add_app("com.example.idle", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler, whitelist=whitelist, timeout_seconds=60)

    scanner.tick()
    clock.advance(60)
    report = scanner.tick()

    assert report.candidates == ["com.example.idle"]
    assert oracle.terminate_calls == [("com.example.idle", False)]


def test_app_with_windows_is_not_a_candidate(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.editor", windows=1)
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()
    clock.advance(600)
    assert scanner.tick().candidates == []


def test_whitelisting_drops_tracked_entry(oracle, clock, queue, scheduler) -> None:
    whitelist = WhitelistStore()
    oracle.add_app("com.example.editor", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler, whitelist=whitelist)
    scanner.tick()
    assert scanner.tracker.get("com.example.editor") is not None

    whitelist.add("com.example.editor")
    scanner.tick()
    assert scanner.tracker.get("com.example.editor") is None


def test_audio_playback_postpones_termination(oracle, clock, queue, scheduler) -> None:
    app_id = "com.example.player"
    oracle.add_app(app_id, windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60, interval=5)
    start = clock()

    for step in range(14):
        elapsed = step * 5
        oracle.playing = {app_id} if 50 <= elapsed < 65 else set()
        report = scanner.tick()
        if elapsed == 60:
            assert report.audio_protected == [app_id]
        if elapsed < 65:
            assert oracle.terminate_calls == [], f"terminated at t={elapsed}"
        clock.advance(5)

    assert clock() - start == 70
    assert report.candidates == [app_id]
    assert oracle.terminate_calls == [(app_id, False)]


def test_failed_audio_check_counts_as_playing(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.player", windows=0)
    oracle.audio_error = OracleTimeout("lsof timed out")
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()
    clock.advance(60)

    report = scanner.tick()

    assert report.candidates == []
    assert report.audio_protected == ["com.example.player"]


def test_audio_ignored_when_protection_disabled(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.player", windows=0)
    oracle.playing = {"com.example.player"}
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60, protect_audio=False)
    scanner.tick()
    clock.advance(60)
    assert scanner.tick().candidates == ["com.example.player"]


def test_candidate_is_dropped_from_tracker_and_issued_once(oracle, clock, queue, scheduler) -> None:
    app_id = "com.example.stubborn"
    oracle.add_app(app_id, windows=0)
    oracle.ignore_graceful = {app_id}
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()
    clock.advance(60)

    assert scanner.tick().candidates == [app_id]
    assert scanner.tracker.get(app_id) is None

    # Still running before the grace timer fires: tracked afresh, not re-issued.
    clock.advance(1)
    assert scanner.tick().candidates == []
    assert oracle.terminate_calls == [(app_id, False)]


def test_window_count_timeout_keeps_previous_state(oracle, clock, queue, scheduler) -> None:
    app_id = "com.example.slow"
    oracle.add_app(app_id, windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()

    oracle.window_errors[app_id] = OracleTimeout("no answer")
    clock.advance(60)
    report = scanner.tick()

    assert report.candidates == []
    assert scanner.tracker.get(app_id).last_window_closed_at == 1000.0


def test_overlapping_tick_is_skipped(oracle, clock, queue, scheduler) -> None:
    scanner, _ = _build(oracle, clock, queue, scheduler)
    scanner._tick_guard.acquire()
    try:
        assert scanner.tick() is None
    finally:
        scanner._tick_guard.release()
    assert scanner.tick() is not None


def test_stop_clears_state_and_ignores_late_ticks(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.editor", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler)
    scanner.tick()
    assert len(scanner.tracker) == 1

    scanner.stop()
    assert len(scanner.tracker) == 0
    report = scanner.tick()
    assert report.aborted is True
    assert report.reason == "stopped"
    assert len(scanner.tracker) == 0


def test_other_window_count_errors_skip_only_that_app(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.flaky", windows=0)
    oracle.add_app("com.example.idle", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler, timeout_seconds=60)
    scanner.tick()

    oracle.window_errors["com.example.flaky"] = OracleError("System Events got an error")
    clock.advance(60)
    report = scanner.tick()

    assert report.aborted is False
    assert report.candidates == ["com.example.idle"]
    assert scanner.tracker.get("com.example.flaky") is not None
    assert oracle.terminate_calls == [("com.example.idle", False)]


def test_whitelist_added_by_another_process_applies_next_tick(
    oracle, clock, queue, scheduler, tmp_path: Path
) -> None:
    store = SQLStore(tmp_path / "prefs.db")
    store.create_all()
    daemon_whitelist = WhitelistStore(Preferences(store))
    oracle.add_app("com.spotify.client", windows=0)
    scanner, _ = _build(
        oracle, clock, queue, scheduler, whitelist=daemon_whitelist, timeout_seconds=60
    )
    scanner.tick()
    assert scanner.tracker.get("com.spotify.client") is not None

    cli_store = SQLStore(tmp_path / "prefs.db")
    WhitelistStore(Preferences(cli_store)).add("com.spotify.client")
    clock.advance(60)
    report = scanner.tick()

    assert report.candidates == []
    assert oracle.terminate_calls == []
    assert scanner.tracker.get("com.spotify.client") is None
    assert daemon_whitelist.is_whitelisted("com.spotify.client")


def test_stop_during_observation_does_not_repopulate_tracker(oracle, clock, queue, scheduler) -> None:
    oracle.add_app("com.example.editor", windows=0)
    scanner, _ = _build(oracle, clock, queue, scheduler)
    real_count = oracle.window_count

    def count_then_stop(app_id: str) -> int:
        scanner.stop()
        return real_count(app_id)

    oracle.window_count = count_then_stop
    report = scanner.tick()

    assert report.reason == "stopped"
    assert len(scanner.tracker) == 0
