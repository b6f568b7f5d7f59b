"""Base oracle interface the tidy core queries for OS state and side effects."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class OracleError(RuntimeError):
    """Base error for oracle failures."""


class PermissionUnavailable(OracleError):
    """The OS refused window access (accessibility/automation not granted)."""


class OracleTimeout(OracleError):
    """A bounded oracle lookup did not answer in time."""


class TerminationFailure(OracleError):
    """A terminate request could not be delivered."""


@dataclass(frozen=True)
class RunningApplication:
    """One running application as reported by the oracle."""

    app_id: str
    display_name: str
    is_regular: bool = True
    pid: int | None = None
    bundle_path: str | None = None


class SystemOracle(ABC):
    """Abstract OS integration consumed by the scanner, detector and undo registry."""

    @abstractmethod
    def list_running_applications(self) -> list[RunningApplication]:
        """Return all running applications."""

    @abstractmethod
    def window_count(self, app_id: str) -> int:
        """Return the number of windows (minimized included) owned by an app.

        Raises PermissionUnavailable when window access is not granted.
        """

    @abstractmethod
    def is_playing_audio(self, app_id: str) -> bool:
        """Return whether an app is currently producing audio."""

    @abstractmethod
    def terminate(self, app_id: str, force: bool = False) -> bool:
        """Ask an app to quit; ``force`` kills it outright."""

    @abstractmethod
    def is_running(self, app_id: str) -> bool:
        """Return whether an app is still running."""

    @abstractmethod
    def enumerate_window_paths(self, host_id: str) -> list[str]:
        """Return the locations shown by the host's windows, in window order."""

    @abstractmethod
    def resolve_path_by_title(self, title: str, timeout: float = 3.0) -> str | None:
        """Resolve a host window title to a location; raises OracleTimeout."""

    @abstractmethod
    def launch_application(self, location: str) -> bool:
        """Relaunch an application from its bundle location."""

    @abstractmethod
    def open_location(self, path: str) -> bool:
        """Open a filesystem location in the host application."""
