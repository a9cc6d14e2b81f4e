"""Service state observer: runtime state plus probe result, reduced to one state."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from docstack_ops.config.models import ServiceDescriptor
from docstack_ops.observer.models import ProbeOutcome, ServiceObservation, ServiceState
from docstack_ops.observer.probes import build_probe
from docstack_ops.runtime.compose import DEAD_STATES, PENDING_STATES, ComposeClient

logger = logging.getLogger(__name__)


class ServiceObserver:
    """Observes services through the compose runtime. ``observe`` never raises."""

    def __init__(self, compose: ComposeClient, query_timeout: float = 10.0) -> None:
        self._compose = compose
        self._query_timeout = query_timeout

    async def observe(self, service: ServiceDescriptor) -> ServiceObservation:
        name = getattr(service, "name", None) or str(service)
        try:
            return await self._observe(service)
        except Exception as exc:
            logger.warning("Observation of %s failed: %s", name, exc)
            return ServiceObservation(name, ServiceState.DOWN, f"observation failed: {exc}")

    async def _observe(self, service: ServiceDescriptor) -> ServiceObservation:
        name = service.name
        try:
            container = await self._compose.container_state(name, timeout=self._query_timeout)
        except Exception as exc:
            return ServiceObservation(name, ServiceState.DOWN, f"runtime unreachable: {exc}")

        if container is None:
            return ServiceObservation(name, ServiceState.NOT_FOUND, "no container for service")
        if container.state in DEAD_STATES:
            detail = f"container {container.state}"
            if container.exit_code is not None:
                detail += f" (exit code {container.exit_code})"
            return ServiceObservation(name, ServiceState.DOWN, detail)
        if container.state in PENDING_STATES:
            return ServiceObservation(name, ServiceState.STARTING, f"container {container.state}")
        if container.state == "paused":
            return ServiceObservation(name, ServiceState.DEGRADED, "container paused")
        if container.state != "running":
            return ServiceObservation(name, ServiceState.DOWN, f"unexpected container state {container.state!r}")

        if service.probe is None:
            return ServiceObservation(name, ServiceState.RUNNING, "running (no probe)")

        probe = build_probe(service.probe, self._compose)
        try:
            result = await probe.check(name, container)
        except Exception as exc:
            # the process is alive; only the check broke
            return ServiceObservation(name, ServiceState.DEGRADED, f"probe error: {exc}", probed=True)

        if result.outcome is ProbeOutcome.PASSED:
            return ServiceObservation(name, ServiceState.HEALTHY, result.detail, probed=True)
        if result.outcome is ProbeOutcome.PENDING:
            return ServiceObservation(name, ServiceState.STARTING, result.detail, probed=True)
        return ServiceObservation(name, ServiceState.DEGRADED, result.detail, probed=True)

    async def observe_all(self, services: Iterable[ServiceDescriptor]) -> list[ServiceObservation]:
        """Observe services one after another, in order."""
        observations = []
        for service in services:
            observations.append(await self.observe(service))
        return observations
