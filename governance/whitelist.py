"""Keep-alive whitelist: protected system apps plus user-added ones."""

from __future__ import annotations

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from persistence.preferences import Preferences

logger = logging.getLogger("tidy.whitelist")

# Shell, dock, file manager and login surfaces are never quit.
PROTECTED_APP_IDS = frozenset(
    {
        "com.apple.finder",
        "com.apple.controlcenter",
        "com.apple.dock",
        "com.apple.loginwindow",
    }
)


class WhitelistStore:
    """Membership checks against ``protected ∪ user``; edits touch only the user set."""

    def __init__(
        self,
        preferences: Preferences | None = None,
        protected: frozenset[str] = PROTECTED_APP_IDS,
    ) -> None:
        self.preferences = preferences
        self.protected = frozenset(protected)
        self._lock = threading.Lock()
        self._user: set[str] = set()
        self.refresh()

    def refresh(self) -> None:
        """Reload the user set from the database; other processes may have edited it."""
        if self.preferences is None:
            return
        try:
            stored = self.preferences.whitelist_ids()
        except SQLAlchemyError as exc:
            logger.warning("Could not reload whitelist, keeping cached entries: %s", exc)
            return
        with self._lock:
            self._user = stored - self.protected

    def is_whitelisted(self, app_id: str) -> bool:
        if app_id in self.protected:
            return True
        with self._lock:
            return app_id in self._user

    def is_protected(self, app_id: str) -> bool:
        return app_id in self.protected

    def add(self, app_id: str) -> None:
        if app_id in self.protected:
            return
        with self._lock:
            if app_id in self._user:
                return
            self._user.add(app_id)
        if self.preferences:
            self.preferences.add_whitelist(app_id)
        logger.info("Whitelisted %s", app_id)

    def remove(self, app_id: str) -> None:
        if app_id in self.protected:
            logger.debug("Ignoring removal of protected app %s", app_id)
            return
        with self._lock:
            if app_id not in self._user:
                return
            self._user.discard(app_id)
        if self.preferences:
            self.preferences.remove_whitelist(app_id)
        logger.info("Removed %s from whitelist", app_id)

    def toggle(self, app_id: str) -> bool:
        """Flip user membership and return the new whitelisted state."""
        if self.is_whitelisted(app_id):
            self.remove(app_id)
        else:
            self.add(app_id)
        return self.is_whitelisted(app_id)

    def user_members(self) -> set[str]:
        with self._lock:
            return set(self._user)

    def members(self) -> set[str]:
        return self.user_members() | set(self.protected)
