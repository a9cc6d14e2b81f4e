"""Result models for orchestrated startup."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from docstack_ops.observer.models import ServiceObservation


class ReadinessOutcome(str, Enum):
    ALL_HEALTHY = "all_healthy"
    PARTIAL_TIMEOUT = "partial_timeout"
    FAILED = "failed"


@dataclass
class PhaseReport:
    """How one readiness phase resolved."""

    name: str
    budget: int
    attempts: int = 0
    satisfied: bool = False
    skipped: bool = False
    pending: dict[str, str] = field(default_factory=dict)  # service -> last detail

    @property
    def timed_out(self) -> bool:
        return not self.satisfied and not self.skipped


@dataclass
class ReadinessResult:
    """Terminal result of one readiness session. Callers decide what to do with it."""

    outcome: ReadinessOutcome
    phases: list[PhaseReport] = field(default_factory=list)
    observations: dict[str, ServiceObservation] = field(default_factory=dict)
    duration_ms: float | None = None

    @property
    def all_healthy(self) -> bool:
        return self.outcome is ReadinessOutcome.ALL_HEALTHY

    @property
    def failed(self) -> bool:
        return self.outcome is ReadinessOutcome.FAILED

    @property
    def not_ready(self) -> dict[str, str]:
        """Every service (or check) still not ready, with the reason."""
        out: dict[str, str] = {}
        for phase in self.phases:
            for service, detail in phase.pending.items():
                out.setdefault(service, f"{phase.name}: {detail}")
        return out

    def phase(self, name: str) -> PhaseReport | None:
        for report in self.phases:
            if report.name == name:
                return report
        return None

    def summary(self) -> str:
        if self.all_healthy:
            return "All services healthy"
        lines = [f"Readiness {self.outcome.value.replace('_', ' ')}"]
        for phase in self.phases:
            if phase.timed_out:
                lines.append(f"  {phase.name} phase gave up after {phase.attempts}/{phase.budget} attempts")
            elif phase.skipped and not phase.satisfied:
                lines.append(f"  {phase.name} phase skipped")
        for service, detail in self.not_ready.items():
            lines.append(f"  - {service}: {detail}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "duration_ms": self.duration_ms,
            "not_ready": self.not_ready,
            "phases": [
                {
                    "name": p.name,
                    "budget": p.budget,
                    "attempts": p.attempts,
                    "satisfied": p.satisfied,
                    "skipped": p.skipped,
                    "pending": p.pending,
                }
                for p in self.phases
            ],
            "observations": {k: v.to_dict() for k, v in self.observations.items()},
        }
