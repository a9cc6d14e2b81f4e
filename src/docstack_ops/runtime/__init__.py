"""Process runner and container runtime boundary."""

from __future__ import annotations

from docstack_ops.runtime.compose import ComposeClient, ComposeQueryError, ContainerState
from docstack_ops.runtime.runner import CommandResult, ProcessRunner, RunnerError

__all__ = [
    "CommandResult",
    "ComposeClient",
    "ComposeQueryError",
    "ContainerState",
    "ProcessRunner",
    "RunnerError",
]
