"""Stack lifecycle operations."""

from __future__ import annotations

from docstack_ops.operations.models import OperationResult, StepResult

__all__ = ["OperationResult", "StepResult"]
