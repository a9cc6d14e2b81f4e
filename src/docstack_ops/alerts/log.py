"""Append-only JSON-lines audit log of dispatched alerts."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from docstack_ops.alerts.models import AlertEvent

logger = logging.getLogger(__name__)


class AuditLog:
    """One JSON object per line; written once per dispatched event."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: AlertEvent, deliveries: dict[str, str]) -> None:
        entry = {
            **event.to_dict(),
            "logged_at": datetime.now(UTC).isoformat(),
            "deliveries": deliveries,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry) + "\n")

    def recent(self, limit: int = 20, severity: str | None = None) -> list[dict[str, Any]]:
        """Most recent entries first. Unparseable lines are skipped."""
        if not self._path.exists():
            return []
        entries: list[dict[str, Any]] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt audit log line %d in %s", lineno, self._path)
                    continue
                if severity and entry.get("severity") != severity:
                    continue
                entries.append(entry)
        entries.reverse()
        return entries[:limit]
