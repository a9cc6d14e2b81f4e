"""Alert event model."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AlertSeverity(str, Enum):
    ALERT = "alert"
    RECOVERED = "recovered"
    TEST = "test"


@dataclass(frozen=True)
class AlertEvent:
    """A single notification, fanned out to every configured sink."""

    title: str
    body: str
    severity: AlertSeverity
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    host: str = field(default_factory=socket.gethostname)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "host": self.host,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertEvent:
        return cls(
            title=str(data.get("title", "")),
            body=str(data.get("body", "")),
            severity=AlertSeverity(data.get("severity", AlertSeverity.ALERT.value)),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(UTC),
            host=str(data.get("host", "")),
            details=dict(data.get("details") or {}),
        )
