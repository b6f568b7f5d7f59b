"""Structured JSONL audit trail of quits and restores."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class AuditLogger:
    """Appends one JSON line per termination or restore decision."""

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("tidy.audit")
        self._lock = threading.Lock()

    def log(
        self,
        action: str,
        subject: str,
        outcome: str,
        reason: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append one JSONL audit event."""
        event = {
            "timestamp": datetime.now(UTC).isoformat(),
            "action": action,
            "subject": subject,
            "outcome": outcome,
            "reason": reason,
            "details": details or {},
        }
        line = json.dumps(event, ensure_ascii=True, default=str)
        with self._lock:
            with self.log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        self.logger.info(line)
