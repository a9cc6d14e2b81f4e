"""Readiness orchestration."""

from __future__ import annotations

from docstack_ops.readiness.models import PhaseReport, ReadinessOutcome, ReadinessResult
from docstack_ops.readiness.orchestrator import ReadinessOrchestrator

__all__ = ["PhaseReport", "ReadinessOrchestrator", "ReadinessOutcome", "ReadinessResult"]
