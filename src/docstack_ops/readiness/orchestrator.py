"""Readiness orchestrator: wait for running, then healthy, then functional."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from docstack_ops.config.models import DocstackConfig, ServiceDescriptor
from docstack_ops.observer.models import ServiceObservation, ServiceState
from docstack_ops.observer.observer import ServiceObserver
from docstack_ops.readiness.models import PhaseReport, ReadinessOutcome, ReadinessResult
from docstack_ops.runtime.compose import ComposeClient

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

PHASE_RUNNING = "running"
PHASE_HEALTHY = "healthy"
PHASE_FUNCTIONAL = "functional"


def _pending_detail(observation: ServiceObservation | None, budget: int) -> str:
    if observation is None:
        return f"not polled (budget {budget})"
    return observation.detail or observation.state.value


class ReadinessOrchestrator:
    """Bounded three-phase polling over a set of services.

    Every phase performs at most its budget of attempts and sleeps only
    between attempts. ``await_ready`` always returns a result and never raises.
    """

    def __init__(
        self,
        observer: ServiceObserver,
        compose: ComposeClient,
        *,
        primary_service: str = "",
        functional_check: Sequence[str] = (),
        functional_timeout: float = 30.0,
        functional_budget: int = 30,
        poll_interval: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._observer = observer
        self._compose = compose
        self._primary = primary_service
        self._functional_check = list(functional_check)
        self._functional_timeout = functional_timeout
        self._functional_budget = functional_budget
        self._poll_interval = poll_interval
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: DocstackConfig,
        observer: ServiceObserver,
        compose: ComposeClient,
        sleep: SleepFn = asyncio.sleep,
    ) -> ReadinessOrchestrator:
        return cls(
            observer,
            compose,
            primary_service=config.primary_service,
            functional_check=config.readiness.functional_check,
            functional_timeout=config.readiness.functional_timeout,
            functional_budget=config.readiness.functional_budget,
            poll_interval=config.readiness.poll_interval,
            sleep=sleep,
        )

    async def _observe(self, service: ServiceDescriptor) -> ServiceObservation:
        try:
            return await self._observer.observe(service)
        except Exception as exc:
            name = getattr(service, "name", str(service))
            logger.warning("Observer raised for %s: %s", name, exc)
            return ServiceObservation(name, ServiceState.DOWN, f"observation failed: {exc}")

    async def _poll_until(
        self,
        phase: PhaseReport,
        services: list[ServiceDescriptor],
        latest: dict[str, ServiceObservation],
        satisfied: Callable[[ServiceObservation], bool],
    ) -> None:
        pending = list(services)
        while pending and phase.attempts < phase.budget:
            phase.attempts += 1
            for service in pending:
                latest[service.name] = await self._observe(service)
            pending = [s for s in pending if not satisfied(latest[s.name])]
            if pending and phase.attempts < phase.budget:
                await self._sleep(self._poll_interval)
        phase.satisfied = not pending
        phase.pending = {s.name: _pending_detail(latest.get(s.name), phase.budget) for s in pending}

    async def _functional_phase(self, phase: PhaseReport) -> None:
        last_error = ""
        while phase.attempts < phase.budget:
            phase.attempts += 1
            try:
                result = await self._compose.exec(
                    self._primary, self._functional_check, timeout=self._functional_timeout
                )
            except Exception as exc:
                last_error = str(exc)
            else:
                if result.ok:
                    phase.satisfied = True
                    return
                last_error = result.error_text
            if phase.attempts < phase.budget:
                await self._sleep(self._poll_interval)
        if phase.attempts == 0:
            phase.pending = {self._primary: f"functional check not run (budget {phase.budget})"}
        else:
            phase.pending = {self._primary: f"functional check failed: {last_error}"}

    async def await_ready(
        self,
        services: Sequence[ServiceDescriptor],
        running_budget: int,
        healthy_budget: int,
        functional_budget: int | None = None,
    ) -> ReadinessResult:
        start = time.monotonic()
        services = list(services)
        latest: dict[str, ServiceObservation] = {}

        running = PhaseReport(PHASE_RUNNING, budget=max(running_budget, 0))
        healthy = PhaseReport(PHASE_HEALTHY, budget=max(healthy_budget, 0))
        functional = PhaseReport(
            PHASE_FUNCTIONAL,
            budget=max(functional_budget if functional_budget is not None else self._functional_budget, 0),
        )
        phases = [running, healthy, functional]

        logger.info("Waiting for %d service(s) to start", len(services))
        await self._poll_until(running, services, latest, lambda obs: not obs.state.is_down)

        names = [s.name for s in services]
        never_up = set(running.pending)
        if self._primary and self._primary in names:
            hopeless = self._primary in never_up
        else:
            hopeless = bool(services) and never_up == set(names)

        if hopeless:
            logger.error("Services never came up: %s", ", ".join(sorted(never_up)))
            healthy.skipped = True
            functional.skipped = True
            return self._finish(ReadinessOutcome.FAILED, phases, latest, start)
        if running.timed_out:
            logger.warning("Still not running after %d attempts: %s", running.attempts, ", ".join(running.pending))

        probed = [s for s in services if s.has_probe]
        logger.info("Waiting for %d probed service(s) to report healthy", len(probed))
        await self._poll_until(healthy, probed, latest, lambda obs: obs.state is ServiceState.HEALTHY)
        if healthy.timed_out:
            logger.warning("Not healthy after %d attempts: %s", healthy.attempts, ", ".join(healthy.pending))

        if self._primary and self._functional_check:
            logger.info("Verifying %s responds to %s", self._primary, " ".join(self._functional_check))
            await self._functional_phase(functional)
        else:
            functional.skipped = True
            functional.satisfied = True

        if all(p.satisfied for p in phases):
            outcome = ReadinessOutcome.ALL_HEALTHY
        else:
            outcome = ReadinessOutcome.PARTIAL_TIMEOUT
        return self._finish(outcome, phases, latest, start)

    def _finish(
        self,
        outcome: ReadinessOutcome,
        phases: list[PhaseReport],
        latest: dict[str, ServiceObservation],
        start: float,
    ) -> ReadinessResult:
        result = ReadinessResult(
            outcome=outcome,
            phases=phases,
            observations=dict(latest),
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
        if result.all_healthy:
            logger.info("All services ready in %.1fs", (result.duration_ms or 0) / 1000)
        else:
            logger.warning(result.summary())
        return result
