"""Health probes, one implementation per probe kind."""

from __future__ import annotations

import time
from typing import Protocol

import httpx

from docstack_ops.config.models import CommandProbeDef, ContainerProbeDef, HttpProbeDef, ProbeDef
from docstack_ops.observer.models import ProbeOutcome, ProbeResult
from docstack_ops.runtime.compose import ComposeClient, ContainerState


class HealthProbe(Protocol):
    """Checks a service whose container is already known to be running."""

    async def check(self, service: str, container: ContainerState) -> ProbeResult: ...


class CommandProbe:
    """Exec a command inside the service container."""

    def __init__(self, definition: CommandProbeDef, compose: ComposeClient) -> None:
        self._definition = definition
        self._compose = compose

    async def check(self, service: str, container: ContainerState) -> ProbeResult:
        result = await self._compose.exec(service, self._definition.command, timeout=self._definition.timeout)
        if not result.ok:
            return ProbeResult(ProbeOutcome.FAILED, f"probe failed: {result.error_text}", result.duration_ms)
        if self._definition.expect and self._definition.expect not in result.text:
            output = result.text.strip()[:120]
            return ProbeResult(
                ProbeOutcome.FAILED,
                f"unexpected probe output: {output!r} (wanted {self._definition.expect!r})",
                result.duration_ms,
            )
        return ProbeResult(ProbeOutcome.PASSED, "probe passed", result.duration_ms)


class HttpProbe:
    """GET a URL from the host."""

    def __init__(self, definition: HttpProbeDef) -> None:
        self._definition = definition

    async def check(self, service: str, container: ContainerState) -> ProbeResult:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._definition.timeout) as client:
                resp = await client.get(self._definition.url)
        except httpx.ConnectError as exc:
            return ProbeResult(ProbeOutcome.FAILED, f"connection refused: {exc}", _since(start))
        except httpx.TimeoutException:
            return ProbeResult(ProbeOutcome.FAILED, "timeout", _since(start))
        latency = _since(start)
        if resp.status_code != self._definition.expected_status:
            return ProbeResult(
                ProbeOutcome.FAILED,
                f"HTTP {resp.status_code} (expected {self._definition.expected_status})",
                latency,
            )
        if self._definition.expect and self._definition.expect not in resp.text:
            return ProbeResult(ProbeOutcome.FAILED, "response body missing expected content", latency)
        return ProbeResult(ProbeOutcome.PASSED, f"HTTP {resp.status_code}", latency)


class ContainerHealthProbe:
    """Read the runtime's own healthcheck status."""

    def __init__(self, definition: ContainerProbeDef) -> None:
        self._definition = definition

    async def check(self, service: str, container: ContainerState) -> ProbeResult:
        health = container.health
        if health == "healthy":
            return ProbeResult(ProbeOutcome.PASSED, "container healthcheck healthy")
        if health == "starting":
            return ProbeResult(ProbeOutcome.PENDING, "container healthcheck starting")
        if not health:
            return ProbeResult(ProbeOutcome.FAILED, "container defines no healthcheck")
        return ProbeResult(ProbeOutcome.FAILED, f"container healthcheck {health}")


def build_probe(definition: ProbeDef, compose: ComposeClient) -> HealthProbe:
    if isinstance(definition, CommandProbeDef):
        return CommandProbe(definition, compose)
    if isinstance(definition, HttpProbeDef):
        return HttpProbe(definition)
    if isinstance(definition, ContainerProbeDef):
        return ContainerHealthProbe(definition)
    raise ValueError(f"Unknown probe definition: {definition!r}")


def _since(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
