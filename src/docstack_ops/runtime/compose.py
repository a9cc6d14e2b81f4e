"""Thin async wrapper around the ``docker compose`` CLI."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from docstack_ops.config.models import StackConfig
from docstack_ops.runtime.runner import CommandResult, ProcessRunner

logger = logging.getLogger(__name__)

# Container states reported by `docker compose ps`
ALIVE_STATES = frozenset({"running"})
PENDING_STATES = frozenset({"created", "restarting"})
DEAD_STATES = frozenset({"exited", "dead", "removing"})


class ComposeQueryError(RuntimeError):
    """The runtime could not be asked about a service."""


@dataclass
class ContainerState:
    """Runtime view of the container behind one compose service."""

    service: str
    state: str
    health: str = ""  # "", "starting", "healthy", "unhealthy"
    exit_code: int | None = None
    name: str = ""


def parse_ps_output(raw: str) -> list[dict[str, Any]]:
    """Parse ``ps --format json`` output: a JSON array or one object per line."""
    raw = raw.strip()
    if not raw:
        return []
    if raw.startswith("["):
        data = json.loads(raw)
        return [item for item in data if isinstance(item, dict)]
    rows: list[dict[str, Any]] = []
    for line in raw.splitlines():
        line = line.strip()
        if line:
            item = json.loads(line)
            if isinstance(item, dict):
                rows.append(item)
    return rows


class ComposeClient:
    """Drives one compose project: query state, exec, start and stop services."""

    def __init__(self, stack: StackConfig, runner: ProcessRunner | None = None) -> None:
        self._stack = stack
        self._runner = runner or ProcessRunner()

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    @property
    def project_dir(self) -> Path:
        return Path(self._stack.project_dir)

    def _base(self) -> list[str]:
        return [
            *self._stack.compose_command,
            "-f",
            self._stack.compose_file,
            "-p",
            self._stack.name,
        ]

    async def _compose(self, *args: str, timeout: float | None = None, **kwargs: Any) -> CommandResult:
        return await self._runner.run(
            [*self._base(), *args],
            timeout=timeout,
            cwd=self.project_dir,
            **kwargs,
        )

    async def container_state(self, service: str, timeout: float = 10.0) -> ContainerState | None:
        """Return the container state for *service*, or None when it has no container.

        Raises ``ComposeQueryError`` when the runtime itself cannot answer.
        """
        result = await self._compose("ps", "--all", "--format", "json", service, timeout=timeout)
        if not result.ok:
            raise ComposeQueryError(result.error_text)
        try:
            rows = parse_ps_output(result.text)
        except json.JSONDecodeError as exc:
            raise ComposeQueryError(f"unreadable ps output: {exc}") from exc

        for row in rows:
            if row.get("Service", service) != service:
                continue
            exit_code = row.get("ExitCode")
            return ContainerState(
                service=service,
                state=str(row.get("State", "")).lower(),
                health=str(row.get("Health", "") or "").lower(),
                exit_code=int(exit_code) if isinstance(exit_code, int) else None,
                name=str(row.get("Name", "")),
            )
        return None

    async def exec(
        self,
        service: str,
        command: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        """Run *command* inside the running container of *service*."""
        return await self._compose(
            "exec",
            "-T",
            service,
            *command,
            timeout=timeout,
            input=input,
            stdin_path=stdin_path,
            stdout_path=stdout_path,
        )

    async def up(self, services: Sequence[str] | None = None, timeout: float | None = 600.0) -> CommandResult:
        logger.info("Starting %s", ", ".join(services) if services else "all services")
        return await self._compose("up", "-d", *(services or ()), timeout=timeout)

    async def start(self, services: Sequence[str] | None = None, timeout: float | None = 300.0) -> CommandResult:
        logger.info("Starting existing containers for %s", ", ".join(services) if services else "all services")
        return await self._compose("start", *(services or ()), timeout=timeout)

    async def stop(self, services: Sequence[str] | None = None, timeout: float | None = 300.0) -> CommandResult:
        logger.info("Stopping %s", ", ".join(services) if services else "all services")
        return await self._compose("stop", *(services or ()), timeout=timeout)

    async def restart(self, services: Sequence[str] | None = None, timeout: float | None = 300.0) -> CommandResult:
        logger.info("Restarting %s", ", ".join(services) if services else "all services")
        return await self._compose("restart", *(services or ()), timeout=timeout)

    async def down(self, timeout: float | None = 300.0) -> CommandResult:
        logger.info("Removing containers for project %s", self._stack.name)
        return await self._compose("down", timeout=timeout)

    async def pull(self, timeout: float | None = 1800.0) -> CommandResult:
        logger.info("Pulling images for project %s", self._stack.name)
        return await self._compose("pull", timeout=timeout)
