"""Typer command handlers."""

from __future__ import annotations

import json
import signal
import threading
from pathlib import Path
from typing import Any

import typer

from core.orchestrator import Orchestrator, RuntimeBundle
from core.policy_runtime import load_settings, save_preference
from governance.whitelist import WhitelistStore
from os_controller.base_controller import OracleError, OracleTimeout, PermissionUnavailable
from persistence.preferences import Preferences


def _runtime(root: Path | None = None) -> RuntimeBundle:
    bundle = Orchestrator(root=root).build()
    return bundle


def _preferences(root: Path | None = None) -> tuple[dict[str, Any], Preferences]:
    config, _, preferences = Orchestrator(root=root).open_preferences()
    return config, preferences


def _echo_events(bundle: RuntimeBundle) -> None:
    """Print the events a toast would show."""
    hotkey = "kill -USR1 <pid>"

    def on_auto_quit(payload: dict[str, Any]) -> None:
        typer.echo(f"Quit {payload['display_name']} (no windows). Undo: {hotkey}")

    def on_terminated(payload: dict[str, Any]) -> None:
        typer.echo(f"{payload['display_name']} closed. Undo: {hotkey}")

    def on_window_closed(payload: dict[str, Any]) -> None:
        typer.echo(f"{payload['event'].display_name} closed. Undo: {hotkey}")

    def on_undo(payload: dict[str, Any]) -> None:
        result = payload["result"]
        typer.echo(f"Undo: {result.reason}")

    bundle.event_bus.subscribe("app_auto_quit", on_auto_quit)
    bundle.event_bus.subscribe("app_terminated", on_terminated)
    bundle.event_bus.subscribe("window_closed", on_window_closed)
    bundle.event_bus.subscribe("undo_consumed", on_undo)


def run() -> None:
    """Run the tidy daemon until interrupted; SIGUSR1 triggers undo."""
    bundle = _runtime()
    _echo_events(bundle)

    stop_requested = threading.Event()
    undo_requested = threading.Event()

    def handle_stop(signum: int, frame: Any) -> None:
        stop_requested.set()

    def handle_undo(signum: int, frame: Any) -> None:
        undo_requested.set()

    signal.signal(signal.SIGINT, handle_stop)
    signal.signal(signal.SIGTERM, handle_stop)
    signal.signal(signal.SIGUSR1, handle_undo)

    bundle.start()
    typer.echo(
        f"App tidy running (timeout {bundle.settings.app_timeout_seconds}s, "
        f"undo {'on' if bundle.settings.undo_close_enabled else 'off'})."
    )
    try:
        while not stop_requested.is_set():
            if undo_requested.wait(0.5):
                undo_requested.clear()
                result = bundle.undo_registry.consume()
                if not result.restored and result.token is None:
                    typer.echo("Nothing to undo.")
    finally:
        bundle.stop()
        typer.echo("bye")


def scan() -> None:
    """Print running apps with their window state, without quitting anything."""
    bundle = _runtime()
    oracle = bundle.oracle
    try:
        apps = oracle.list_running_applications()
    except OracleError as exc:
        typer.echo(f"Cannot list applications: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    for app in sorted(apps, key=lambda a: a.display_name.lower()):
        if not app.is_regular:
            continue
        if bundle.whitelist.is_whitelisted(app.app_id):
            typer.echo(f"{app.display_name} ({app.app_id}): kept alive")
            continue
        try:
            count = oracle.window_count(app.app_id)
        except PermissionUnavailable as exc:
            typer.echo("Window access not granted; grant accessibility permission.", err=True)
            raise typer.Exit(code=1) from exc
        except OracleTimeout:
            typer.echo(f"{app.display_name} ({app.app_id}): window count timed out")
            continue
        typer.echo(f"{app.display_name} ({app.app_id}): {count} window(s)")


def whitelist_list() -> None:
    _, preferences = _preferences()
    whitelist = WhitelistStore(preferences)
    for app_id in sorted(whitelist.members()):
        marker = " (protected)" if whitelist.is_protected(app_id) else ""
        typer.echo(f"{app_id}{marker}")


def whitelist_add(app_id: str) -> None:
    _, preferences = _preferences()
    WhitelistStore(preferences).add(app_id)
    typer.echo(f"Keeping alive: {app_id}")


def whitelist_remove(app_id: str) -> None:
    _, preferences = _preferences()
    whitelist = WhitelistStore(preferences)
    if whitelist.is_protected(app_id):
        typer.echo(f"{app_id} is protected and always kept alive.")
        return
    whitelist.remove(app_id)
    typer.echo(f"Removed from whitelist: {app_id}")


def config_show() -> None:
    """Show effective settings."""
    config, preferences = _preferences()
    typer.echo(json.dumps(load_settings(config, preferences).model_dump(), indent=2))


def config_set(key: str, value: str) -> None:
    """Persist one user preference."""
    _, preferences = _preferences()
    try:
        stored = save_preference(preferences, key, value)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{key} = {stored!r} (applies on next start)")
