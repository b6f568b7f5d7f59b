"""Single-slot undo: the most recently closed app or window can be restored once."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.event_bus import EventBus
from governance.audit_logger import AuditLogger
from os_controller.base_controller import SystemOracle

logger = logging.getLogger("tidy.undo")

DEFAULT_UNDO_TTL_SECONDS = 5.0


class SubjectKind(str, Enum):
    PROCESS = "process"
    LOCATION = "location"


class UndoToken(BaseModel):
    """Record of the last removed entity, valid for ``ttl_seconds``."""

    model_config = ConfigDict(frozen=True)

    subject_kind: SubjectKind
    restore_target: str
    created_at: float
    display_name: str
    ttl_seconds: float = Field(default=DEFAULT_UNDO_TTL_SECONDS, gt=0)
    restorable: bool = True
    app_id: str | None = None

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds


@dataclass
class RestoreResult:
    """Outcome of one consume call."""

    restored: bool
    reason: str
    token: UndoToken | None = None


class UndoRegistry:
    """Holds at most one live token; last write wins, expiry is checked on consume."""

    def __init__(
        self,
        oracle: SystemOracle,
        event_bus: EventBus | None = None,
        audit_logger: AuditLogger | None = None,
        ttl_seconds: float = DEFAULT_UNDO_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
    ) -> None:
        self.oracle = oracle
        self.event_bus = event_bus
        self.audit_logger = audit_logger
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.enabled = enabled
        self._lock = threading.Lock()
        self._token: UndoToken | None = None

    def new_token(
        self,
        kind: SubjectKind,
        restore_target: str,
        display_name: str,
        *,
        restorable: bool = True,
        app_id: str | None = None,
    ) -> UndoToken:
        """Build a token stamped with the registry's clock and TTL."""
        return UndoToken(
            subject_kind=kind,
            restore_target=restore_target,
            created_at=self.clock(),
            display_name=display_name,
            ttl_seconds=self.ttl_seconds,
            restorable=restorable,
            app_id=app_id,
        )

    def register(self, token: UndoToken) -> None:
        if not self.enabled:
            logger.debug("Undo disabled, dropping token for %s", token.display_name)
            return
        with self._lock:
            replaced = self._token
            self._token = token
        if replaced is not None:
            logger.debug("Replaced undo token for %s", replaced.display_name)
        logger.info("Registered undo token for %s", token.display_name)
        self._emit("undo_registered", {"token": token})

    def peek(self) -> UndoToken | None:
        """Return the live token without consuming it."""
        with self._lock:
            token = self._token
        if token is None or token.is_expired(self.clock()):
            return None
        return token

    def clear(self) -> None:
        with self._lock:
            self._token = None

    def consume(self) -> RestoreResult:
        """Restore the live token's subject and empty the slot."""
        with self._lock:
            token = self._token
            self._token = None
        if token is None or token.is_expired(self.clock()):
            logger.warning("No valid undo token")
            return RestoreResult(restored=False, reason="no valid undo token")

        if not token.restorable:
            logger.warning("Undo token for %s cannot be restored", token.display_name)
            result = RestoreResult(restored=False, reason="not restorable", token=token)
        elif token.subject_kind is SubjectKind.LOCATION:
            ok = self.oracle.open_location(token.restore_target)
            result = RestoreResult(ok, "reopened" if ok else "open failed", token)
        else:
            ok = self.oracle.launch_application(token.restore_target)
            result = RestoreResult(ok, "relaunched" if ok else "relaunch failed", token)

        if result.restored:
            logger.info("Restored %s (%s)", token.display_name, token.restore_target)
        else:
            logger.error("Failed to restore %s: %s", token.display_name, result.reason)
        if self.audit_logger:
            self.audit_logger.log(
                action="undo",
                subject=token.app_id or token.restore_target,
                outcome="restored" if result.restored else "failed",
                reason=result.reason,
                details={"kind": token.subject_kind.value, "target": token.restore_target},
            )
        self._emit("undo_consumed", {"result": result})
        return result

    def _emit(self, event_name: str, payload: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_name, payload)
