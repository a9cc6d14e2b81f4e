"""Lifecycle verbs composed from the compose client, backups and readiness."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from docstack_ops.backup.controller import ConsistencyController
from docstack_ops.backup.models import BackupTier
from docstack_ops.config.models import DocstackConfig
from docstack_ops.operations.models import OperationResult, StepResult
from docstack_ops.readiness.models import ReadinessResult
from docstack_ops.readiness.orchestrator import ReadinessOrchestrator
from docstack_ops.runtime.compose import ComposeClient
from docstack_ops.runtime.runner import CommandResult

logger = logging.getLogger(__name__)


class StackOperations:
    """Start, stop, restart and update the stack."""

    def __init__(
        self,
        config: DocstackConfig,
        compose: ComposeClient,
        orchestrator: ReadinessOrchestrator,
        backups: ConsistencyController | None = None,
    ) -> None:
        self._config = config
        self._compose = compose
        self._orchestrator = orchestrator
        self._backups = backups

    async def _command_step(
        self,
        result: OperationResult,
        name: str,
        action: Callable[[], Awaitable[CommandResult]],
    ) -> bool:
        command = await action()
        result.steps.append(StepResult(
            name=name,
            success=command.ok,
            error=None if command.ok else command.error_text,
            duration_ms=command.duration_ms,
        ))
        if not command.ok:
            logger.error("%s failed: %s", name, command.error_text)
        return command.ok

    async def wait(self) -> ReadinessResult:
        readiness = self._config.readiness
        return await self._orchestrator.await_ready(
            self._config.descriptors,
            readiness.running_budget,
            readiness.healthy_budget,
            readiness.functional_budget,
        )

    async def start(self) -> OperationResult:
        result = OperationResult(operation="start")
        if await self._command_step(result, "up", self._compose.up):
            result.readiness = await self.wait()
        return result

    async def stop(self) -> OperationResult:
        result = OperationResult(operation="stop")
        await self._command_step(result, "stop", self._compose.stop)
        return result

    async def restart(self) -> OperationResult:
        result = OperationResult(operation="restart")
        if await self._command_step(result, "restart", self._compose.restart):
            result.readiness = await self.wait()
        return result

    async def update(self) -> OperationResult:
        """Back up, pull new images, recreate containers and wait for readiness.

        A failed safety backup is recorded but does not stop the update. A
        failed pull does, since nothing has changed on the host yet.
        """
        result = OperationResult(operation="update")

        if self._backups is None:
            result.steps.append(StepResult(
                name="backup",
                success=True,
                skipped=True,
                data={"message": "no backup controller configured"},
            ))
        else:
            start = time.monotonic()
            try:
                manifest = await self._backups.snapshot(BackupTier.QUICK)
            except Exception as exc:
                logger.exception("Pre-update backup failed")
                result.steps.append(StepResult(
                    name="backup",
                    success=False,
                    error=str(exc),
                    duration_ms=round((time.monotonic() - start) * 1000, 1),
                ))
            else:
                result.steps.append(StepResult(
                    name="backup",
                    success=manifest.complete,
                    data={"backup_id": manifest.backup_id, "warnings": list(manifest.warnings)},
                    error=None if manifest.complete else "; ".join(manifest.warnings),
                    duration_ms=round((time.monotonic() - start) * 1000, 1),
                ))

        if not await self._command_step(result, "pull", self._compose.pull):
            return result
        if await self._command_step(result, "up", self._compose.up):
            result.readiness = await self.wait()
        return result
