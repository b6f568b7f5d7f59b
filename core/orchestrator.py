"""Top-level composition root wiring the tidy components."""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.event_bus import EventBus
from core.idle_scanner import ConcurrentScanner
from core.lifecycle_watcher import AppLifecycleWatcher
from core.policy_runtime import ensure_runtime_dirs, load_effective_config, load_settings
from core.serial_queue import SerialQueue
from core.settings import TidySettings
from executor.termination import TerminationExecutor
from executor.undo_registry import UndoRegistry
from governance.audit_logger import AuditLogger
from governance.whitelist import WhitelistStore
from os_controller.base_controller import SystemOracle
from persistence.preferences import Preferences
from persistence.sql_store import SQLStore
from world_model.window_close_detector import WindowCloseDetector

logger = logging.getLogger("tidy.orchestrator")

# Room for the forced terminate and is_running check after the grace period.
_DRAIN_MARGIN_SECONDS = 5.0


@dataclass
class RuntimeBundle:
    """Holds initialized runtime components."""

    config: dict[str, Any]
    settings: TidySettings
    preferences: Preferences
    oracle: SystemOracle
    event_bus: EventBus
    queue: SerialQueue
    whitelist: WhitelistStore
    undo_registry: UndoRegistry
    executor: TerminationExecutor
    scanner: ConcurrentScanner
    detector: WindowCloseDetector
    watcher: AppLifecycleWatcher

    def start(self) -> None:
        """Start the subsystems enabled in settings."""
        if self.settings.app_timeout_enabled:
            self.scanner.start()
        if self.settings.undo_close_enabled:
            self.undo_registry.enabled = True
            self.detector.start()
            self.watcher.start()

    def stop(self) -> None:
        """Stop the workers, let armed grace checks finish, then close the queue."""
        self.scanner.stop()
        self.detector.stop()
        self.watcher.stop()
        drain = self.settings.grace_period_seconds + _DRAIN_MARGIN_SECONDS
        if not self.executor.wait_idle(drain):
            logger.warning("Terminations still pending after %.1fs, closing queue", drain)
        self.queue.shutdown(wait=True)
        self.undo_registry.clear()


def default_oracle(settings: TidySettings) -> SystemOracle:
    if sys.platform != "darwin":
        raise RuntimeError(f"No system oracle available for platform {sys.platform!r}.")
    from os_controller.macos_controller import MacOSController

    return MacOSController(path_lookup_timeout=settings.path_lookup_timeout_seconds)


class Orchestrator:
    """Creates and wires runtime components for CLI use."""

    def __init__(
        self,
        root: Path | None = None,
        oracle: SystemOracle | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        default_root = Path(__file__).resolve().parents[1]
        self.root = (root or default_root).resolve()
        self.oracle = oracle
        self.clock = clock

    def open_preferences(self) -> tuple[dict[str, Any], dict[str, Path], Preferences]:
        """Load config and open the preferences database, without touching the OS."""
        config = load_effective_config(self.root)
        paths = ensure_runtime_dirs(config)
        sql_store = SQLStore(paths["db_path"])
        sql_store.create_all()
        return config, paths, Preferences(sql_store)

    def build(self) -> RuntimeBundle:
        config, paths, preferences = self.open_preferences()
        settings = load_settings(config, preferences)

        oracle = self.oracle or default_oracle(settings)
        event_bus = EventBus()
        queue = SerialQueue()
        audit_logger = AuditLogger(paths["audit_log_path"])
        whitelist = WhitelistStore(preferences)

        undo_registry = UndoRegistry(
            oracle=oracle,
            event_bus=event_bus,
            audit_logger=audit_logger,
            ttl_seconds=float(settings.undo_ttl_seconds),
            clock=self.clock,
            enabled=settings.undo_close_enabled,
        )
        executor = TerminationExecutor(
            oracle=oracle,
            queue=queue,
            undo_registry=undo_registry,
            event_bus=event_bus,
            audit_logger=audit_logger,
            grace_seconds=settings.grace_period_seconds,
            clock=self.clock,
        )
        scanner = ConcurrentScanner(
            oracle=oracle,
            whitelist=whitelist,
            executor=executor,
            timeout_seconds=float(settings.app_timeout_seconds),
            interval=settings.scan_interval_seconds,
            protect_audio=settings.protect_audio_apps,
            clock=self.clock,
        )
        detector = WindowCloseDetector(
            oracle=oracle,
            undo_registry=undo_registry,
            queue=queue,
            event_bus=event_bus,
            host_id=settings.host_app_id,
            host_name=settings.host_app_name,
            interval=settings.window_poll_seconds,
        )
        watcher = AppLifecycleWatcher(
            oracle=oracle,
            undo_registry=undo_registry,
            executor=executor,
            queue=queue,
            event_bus=event_bus,
            ignore_ids=settings.self_app_ids,
            interval=settings.lifecycle_poll_seconds,
        )
        logger.debug("Runtime built from %s", self.root)

        return RuntimeBundle(
            config=config,
            settings=settings,
            preferences=preferences,
            oracle=oracle,
            event_bus=event_bus,
            queue=queue,
            whitelist=whitelist,
            undo_registry=undo_registry,
            executor=executor,
            scanner=scanner,
            detector=detector,
            watcher=watcher,
        )
