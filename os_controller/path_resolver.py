"""Resolve host windows to filesystem locations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from os_controller.base_controller import OracleTimeout

logger = logging.getLogger("tidy.path_resolver")

PLACEHOLDER_ROOT = "/PseudoPath/"
WINDOW_ROLE = "AXWindow"

TitleLookup = Callable[[str, float], "str | None"]


@dataclass(frozen=True)
class WindowRef:
    """Raw attributes of one host window, in enumeration order."""

    title: str | None
    role: str | None = WINDOW_ROLE
    document: str | None = None


def is_placeholder_path(path: str) -> bool:
    """Return True for synthesized locations that cannot be restored."""
    return path.startswith(PLACEHOLDER_ROOT)


def placeholder_path(title: str) -> str:
    return f"{PLACEHOLDER_ROOT}{title}"


def document_to_path(document: str | None) -> str | None:
    """Convert a window document attribute (``file://`` URL) to a POSIX path."""
    if not document:
        return None
    parsed = urlparse(document)
    if parsed.scheme and parsed.scheme != "file":
        return None
    path = unquote(parsed.path if parsed.scheme else document)
    return path or None


class WindowPathResolver:
    """Maps each window to a location, falling back to a title lookup, then a placeholder."""

    def __init__(self, lookup: TitleLookup, timeout: float = 3.0) -> None:
        self.lookup = lookup
        self.timeout = timeout

    def resolve(self, windows: Iterable[WindowRef]) -> list[str]:
        paths: list[str] = []
        for index, window in enumerate(windows):
            path = document_to_path(window.document)
            if path:
                paths.append(path)
                continue

            # Untitled or non-window elements are not tracked at all.
            if window.role != WINDOW_ROLE or not window.title:
                continue

            path = self._lookup(window.title)
            if path:
                logger.debug("Window %d resolved by title: %s", index, path)
                paths.append(path)
            else:
                # Still counted so the close is detected, but never restorable.
                pseudo = placeholder_path(window.title)
                logger.debug("Window %d unresolved, tracking as %s", index, pseudo)
                paths.append(pseudo)
        return paths

    def _lookup(self, title: str) -> str | None:
        try:
            return self.lookup(title, self.timeout)
        except OracleTimeout:
            logger.warning("Path lookup timed out for window: %s", title)
            return None
