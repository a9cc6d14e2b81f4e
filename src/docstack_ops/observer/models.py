"""Data models for observed service state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ServiceState(str, Enum):
    """Normalized state of one service at one poll."""

    NOT_FOUND = "not_found"
    STARTING = "starting"
    RUNNING = "running"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"

    @property
    def is_down(self) -> bool:
        return self in (ServiceState.NOT_FOUND, ServiceState.DOWN)


class ProbeOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class ProbeResult:
    """Result of a single health probe."""

    outcome: ProbeOutcome
    detail: str = ""
    latency_ms: float = 0.0


@dataclass(frozen=True)
class ServiceObservation:
    """One service, one poll. Superseded, never mutated."""

    service: str
    state: ServiceState
    detail: str = ""
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    probed: bool = False

    @property
    def counts_healthy(self) -> bool:
        """Healthy, or running with no probe to say otherwise."""
        if self.state is ServiceState.HEALTHY:
            return True
        return self.state is ServiceState.RUNNING and not self.probed

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "state": self.state.value,
            "detail": self.detail,
            "observed_at": self.observed_at.isoformat(),
            "probed": self.probed,
            "healthy": self.counts_healthy,
        }
