"""Data models for multi-step stack operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docstack_ops.readiness.models import ReadinessResult


@dataclass
class StepResult:
    """Result of a single operation step."""

    name: str
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    skipped: bool = False
    duration_ms: float | None = None


@dataclass
class OperationResult:
    """Result of a lifecycle, backup or restore operation."""

    operation: str
    steps: list[StepResult] = field(default_factory=list)
    readiness: ReadinessResult | None = None

    @property
    def success(self) -> bool:
        steps_ok = all(s.success or s.skipped for s in self.steps)
        if self.readiness is not None and self.readiness.failed:
            return False
        return steps_ok

    def step(self, name: str) -> StepResult | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "success": self.success,
            "readiness": self.readiness.to_dict() if self.readiness else None,
            "steps": [
                {
                    "name": s.name,
                    "success": s.success,
                    "skipped": s.skipped,
                    "data": s.data,
                    "error": s.error,
                    "duration_ms": s.duration_ms,
                }
                for s in self.steps
            ],
        }
