"""Health monitor: one tick per scheduler invocation, edge-triggered alerts."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from docstack_ops.alerts.dispatcher import AlertDispatcher, DispatchReport
from docstack_ops.alerts.models import AlertEvent, AlertSeverity
from docstack_ops.config.models import ServiceDescriptor
from docstack_ops.monitor.tracker import FailureTracker, FailureTrackerStore, TrackedStatus
from docstack_ops.observer.models import ServiceObservation
from docstack_ops.observer.observer import ServiceObserver

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """What one tick saw and did."""

    observations: list[ServiceObservation]
    tracker: FailureTracker
    event: AlertEvent | None = None
    report: DispatchReport | None = None
    unhealthy: list[ServiceObservation] = field(default_factory=list)

    @property
    def all_healthy(self) -> bool:
        return not self.unhealthy

    def to_dict(self) -> dict[str, Any]:
        return {
            "all_healthy": self.all_healthy,
            "consecutive_failures": self.tracker.consecutive_failures,
            "last_status": self.tracker.last_status.value,
            "alert": self.event.severity.value if self.event else None,
            "unhealthy": {o.service: o.detail for o in self.unhealthy},
        }


def format_outage(unhealthy: Sequence[ServiceObservation], failures: int) -> str:
    lines = [f"{len(unhealthy)} service(s) unhealthy for {failures} consecutive check(s):"]
    for obs in unhealthy:
        lines.append(f"  - {obs.service}: {obs.state.value} ({obs.detail})")
    return "\n".join(lines)


class HealthMonitor:
    """Samples every service and turns sustained failure into one alert."""

    def __init__(
        self,
        observer: ServiceObserver,
        services: Sequence[ServiceDescriptor],
        store: FailureTrackerStore,
        dispatcher: AlertDispatcher,
        *,
        failure_threshold: int = 3,
        stack_name: str = "docstack",
        host: str = "",
    ) -> None:
        self._observer = observer
        self._services = list(services)
        self._store = store
        self._dispatcher = dispatcher
        self._threshold = max(failure_threshold, 1)
        self._stack_name = stack_name
        self._host = host or socket.gethostname()

    @property
    def failure_threshold(self) -> int:
        return self._threshold

    async def tick(self) -> TickResult:
        observations = await self._observer.observe_all(self._services)
        unhealthy = [obs for obs in observations if not obs.counts_healthy]
        event: AlertEvent | None = None

        with self._store.locked() as tracker:
            if not unhealthy:
                if tracker.last_status is TrackedStatus.UNHEALTHY:
                    event = AlertEvent(
                        title=f"{self._stack_name}: all services recovered",
                        body=f"All {len(observations)} service(s) are healthy again.",
                        severity=AlertSeverity.RECOVERED,
                        host=self._host,
                    )
                tracker.consecutive_failures = 0
                tracker.last_status = TrackedStatus.HEALTHY
            else:
                tracker.consecutive_failures += 1
                logger.warning(
                    "Unhealthy check %d/%d: %s",
                    tracker.consecutive_failures,
                    self._threshold,
                    ", ".join(f"{o.service}={o.state.value}" for o in unhealthy),
                )
                if (
                    tracker.consecutive_failures >= self._threshold
                    and tracker.last_status is not TrackedStatus.UNHEALTHY
                ):
                    event = AlertEvent(
                        title=f"{self._stack_name}: {len(unhealthy)} service(s) unhealthy",
                        body=format_outage(unhealthy, tracker.consecutive_failures),
                        severity=AlertSeverity.ALERT,
                        host=self._host,
                        details={o.service: {"state": o.state.value, "detail": o.detail} for o in unhealthy},
                    )
                    tracker.last_status = TrackedStatus.UNHEALTHY
            snapshot = replace(tracker)

        # state is committed and the lock released before any sink runs
        report = await self._dispatcher.dispatch(event) if event is not None else None
        return TickResult(
            observations=observations,
            tracker=snapshot,
            event=event,
            report=report,
            unhealthy=unhealthy,
        )
