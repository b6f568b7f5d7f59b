"""macOS oracle backed by osascript (JXA/AppleScript), lsof, open and psutil."""

from __future__ import annotations

import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Any

import psutil

from os_controller.base_controller import (
    OracleError,
    OracleTimeout,
    PermissionUnavailable,
    RunningApplication,
    SystemOracle,
    TerminationFailure,
)
from os_controller.path_resolver import WindowPathResolver, WindowRef

OSASCRIPT = "/usr/bin/osascript"
LSOF = "/usr/sbin/lsof"
OPEN = "/usr/bin/open"

# NSApplicationActivationPolicyRegular. Accessory (menu-bar) apps never own windows.
_ACTIVATION_POLICY_REGULAR = 0

# osascript error codes meaning accessibility/automation access was refused.
_PERMISSION_ERRORS = ("-1743", "-1719", "-25211", "not allowed assistive access")

_LIST_APPS_JS = """\
ObjC.import("AppKit");
const apps = $.NSWorkspace.sharedWorkspace.runningApplications;
const out = [];
for (let i = 0; i < apps.count; i++) {
  const app = apps.objectAtIndex(i);
  const url = app.bundleURL;
  out.push({
    id: ObjC.unwrap(app.bundleIdentifier),
    name: ObjC.unwrap(app.localizedName),
    policy: app.activationPolicy,
    pid: app.processIdentifier,
    bundle: url.isNil() ? null : ObjC.unwrap(url.path),
  });
}
JSON.stringify(out);
"""

_WINDOW_COUNT_JS = """\
const procs = Application("System Events").applicationProcesses.whose({bundleIdentifier: %s});
JSON.stringify(procs.length ? procs[0].windows.length : 0);
"""

_HOST_WINDOWS_JS = """\
const procs = Application("System Events").applicationProcesses.whose({bundleIdentifier: %s});
const out = [];
if (procs.length) {
  const wins = procs[0].windows();
  for (const w of wins) {
    let role = null, title = null, doc = null;
    try { role = w.role(); } catch (e) {}
    try { title = w.title(); } catch (e) {}
    try { doc = w.attributes.byName("AXDocument").value(); } catch (e) {}
    out.push({role: role, title: title, document: doc});
  }
}
JSON.stringify(out);
"""

_FINDER_PATH_SCRIPT = (
    'tell application "Finder" to get POSIX path of (target of window "%s" as alias)'
)


def _applescript_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def bundle_root(executable: str | None) -> str | None:
    """Return the enclosing ``.app`` bundle of an executable path."""
    if not executable:
        return None
    for parent in Path(executable).parents:
        if parent.suffix == ".app":
            return str(parent)
    return None


class MacOSController(SystemOracle):
    """Oracle for a macOS desktop session."""

    def __init__(
        self,
        script_timeout: float = 5.0,
        audio_timeout: float = 2.0,
        path_lookup_timeout: float = 3.0,
    ) -> None:
        self.logger = logging.getLogger("tidy.macos_controller")
        if sys.platform != "darwin":
            self.logger.warning("macOS controller should only be run on macOS.")
        self.script_timeout = script_timeout
        self.audio_timeout = audio_timeout
        self.path_lookup_timeout = path_lookup_timeout
        self._pids: dict[str, int] = {}
        self._bundles: dict[str, str] = {}

    # ── Script plumbing ─────────────────────────────────────────────

    def _osascript(self, script: str, *, javascript: bool = False, timeout: float | None = None) -> str:
        args = [OSASCRIPT]
        if javascript:
            args += ["-l", "JavaScript"]
        args += ["-e", script]
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout or self.script_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise OracleTimeout(f"osascript timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise OracleError(f"osascript unavailable: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if any(marker in stderr for marker in _PERMISSION_ERRORS):
                raise PermissionUnavailable(stderr)
            raise OracleError(stderr or f"osascript exited with {result.returncode}")
        return result.stdout.strip()

    def _jxa_json(self, script: str) -> Any:
        output = self._osascript(script, javascript=True)
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise OracleError(f"Unparseable osascript output: {output[:200]}") from exc

    # ── Process state ────────────────────────────────────────────────

    def list_running_applications(self) -> list[RunningApplication]:
        data = self._jxa_json(_LIST_APPS_JS)
        apps: list[RunningApplication] = []
        for row in data:
            app_id = row.get("id")
            if not app_id:
                continue
            name = row.get("name")
            pid = row.get("pid")
            bundle = row.get("bundle") or self._bundle_for(app_id, pid)
            apps.append(
                RunningApplication(
                    app_id=app_id,
                    display_name=name or app_id,
                    is_regular=row.get("policy") == _ACTIVATION_POLICY_REGULAR,
                    pid=pid,
                    bundle_path=bundle,
                )
            )
        self._pids = {app.app_id: app.pid for app in apps if app.pid}
        return apps

    def _bundle_for(self, app_id: str, pid: int | None) -> str | None:
        cached = self._bundles.get(app_id)
        if cached:
            return cached
        if not pid:
            return None
        try:
            bundle = bundle_root(psutil.Process(pid).exe())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None
        if bundle:
            self._bundles[app_id] = bundle
        return bundle

    def window_count(self, app_id: str) -> int:
        script = _WINDOW_COUNT_JS % json.dumps(app_id)
        return int(self._jxa_json(script))

    def is_running(self, app_id: str) -> bool:
        pid = self._pids.get(app_id)
        if pid is not None:
            try:
                proc = psutil.Process(pid)
                return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                return False
            except psutil.AccessDenied:
                return True
        return any(app.app_id == app_id for app in self.list_running_applications())

    def _process_tree(self, pid: int) -> list[int]:
        """Return ``pid`` and its descendants; browsers play audio from helper processes."""
        pids = [pid]
        try:
            pids.extend(child.pid for child in psutil.Process(pid).children(recursive=True))
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            pass
        except psutil.AccessDenied as exc:
            self.logger.debug("Cannot list helpers of %s: %s", pid, exc)
        return pids

    def is_playing_audio(self, app_id: str) -> bool:
        pid = self._pids.get(app_id)
        if pid is None:
            return False
        pids = ",".join(str(p) for p in self._process_tree(pid))
        try:
            result = subprocess.run(
                [LSOF, "-p", pids, "-Fn"],
                capture_output=True,
                text=True,
                timeout=self.audio_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise OracleTimeout(f"lsof timed out for {app_id}") from exc
        except OSError as exc:
            raise OracleError(f"lsof unavailable: {exc}") from exc
        return "CoreAudio" in result.stdout or "coreaudiod" in result.stdout

    def terminate(self, app_id: str, force: bool = False) -> bool:
        if force:
            pid = self._pids.get(app_id)
            if pid is None:
                return False
            try:
                psutil.Process(pid).kill()
                return True
            except psutil.NoSuchProcess:
                return True
            except psutil.AccessDenied as exc:
                raise TerminationFailure(f"Force terminate denied for {app_id}") from exc
        script = f'tell application id "{_applescript_string(app_id)}" to quit'
        try:
            self._osascript(script)
            return True
        except OracleError as exc:
            self.logger.warning("Graceful terminate failed for %s: %s", app_id, exc)
            return False

    # ── Host windows ─────────────────────────────────────────────────

    def enumerate_windows(self, host_id: str) -> list[WindowRef]:
        rows = self._jxa_json(_HOST_WINDOWS_JS % json.dumps(host_id))
        return [
            WindowRef(title=row.get("title"), role=row.get("role"), document=row.get("document"))
            for row in rows
        ]

    def enumerate_window_paths(self, host_id: str) -> list[str]:
        resolver = WindowPathResolver(self.resolve_path_by_title, self.path_lookup_timeout)
        return resolver.resolve(self.enumerate_windows(host_id))

    def resolve_path_by_title(self, title: str, timeout: float = 3.0) -> str | None:
        script = _FINDER_PATH_SCRIPT % _applescript_string(title)
        try:
            output = self._osascript(script, timeout=timeout)
        except OracleTimeout:
            raise
        except OracleError as exc:
            self.logger.debug("Title lookup failed for %s: %s", title, exc)
            return None
        return output or None

    # ── Restore actions ──────────────────────────────────────────────

    def _open(self, args: list[str]) -> bool:
        try:
            result = subprocess.run(
                [OPEN, *args],
                capture_output=True,
                text=True,
                timeout=self.script_timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            self.logger.error("open %s failed: %s", " ".join(args), exc)
            return False
        if result.returncode != 0:
            self.logger.error("open %s failed: %s", " ".join(args), result.stderr.strip())
            return False
        return True

    def launch_application(self, location: str) -> bool:
        # Bare bundle identifiers are used when the bundle path was never resolved.
        if "/" not in location:
            return self._open(["-b", location])
        return self._open(["-a", location])

    def open_location(self, path: str) -> bool:
        return self._open([path])
