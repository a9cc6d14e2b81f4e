"""Alert dispatcher: one event, many sinks, each failure isolated."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from docstack_ops.alerts.log import AuditLog
from docstack_ops.alerts.models import AlertEvent

if TYPE_CHECKING:
    from docstack_ops.config.models import AlertingConfig
    from docstack_ops.runtime.runner import ProcessRunner

logger = logging.getLogger(__name__)

DELIVERED = "ok"


class AlertDeliveryError(RuntimeError):
    """A sink could not deliver an event."""


class AlertSink(Protocol):
    """Protocol for alert destinations. ``send`` raises on failure."""

    name: str

    async def send(self, event: AlertEvent) -> None: ...


@dataclass
class DispatchReport:
    """Per-sink outcome of one dispatch."""

    event: AlertEvent
    deliveries: dict[str, str] = field(default_factory=dict)

    @property
    def delivered(self) -> list[str]:
        return [name for name, outcome in self.deliveries.items() if outcome == DELIVERED]

    @property
    def failed(self) -> dict[str, str]:
        return {name: outcome for name, outcome in self.deliveries.items() if outcome != DELIVERED}


class AlertDispatcher:
    """Calls every sink in order, then records the event in the audit log."""

    def __init__(self, sinks: list[AlertSink] | None = None, audit_log: AuditLog | None = None) -> None:
        self._sinks: list[AlertSink] = list(sinks or [])
        self._audit_log = audit_log

    @property
    def sinks(self) -> list[AlertSink]:
        return list(self._sinks)

    @property
    def audit_log(self) -> AuditLog | None:
        return self._audit_log

    def add_sink(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    async def dispatch(self, event: AlertEvent) -> DispatchReport:
        report = DispatchReport(event=event)
        for sink in self._sinks:
            try:
                await sink.send(event)
            except Exception as exc:
                logger.exception("Alert sink %s failed for %r", sink.name, event.title)
                report.deliveries[sink.name] = f"error: {exc}"
            else:
                report.deliveries[sink.name] = DELIVERED

        if self._audit_log is not None:
            try:
                self._audit_log.append(event, report.deliveries)
            except Exception:
                logger.exception("Could not write alert audit log %s", self._audit_log.path)

        logger.info(
            "Dispatched %s alert %r - delivered: %d/%d",
            event.severity.value,
            event.title,
            len(report.delivered),
            len(self._sinks),
        )
        return report


def create_dispatcher(config: AlertingConfig, runner: ProcessRunner | None = None) -> AlertDispatcher:
    """Wire sinks from configuration. Disabled alerting keeps only the audit log."""
    dispatcher = AlertDispatcher(audit_log=AuditLog(config.audit_log))
    if not config.enabled:
        return dispatcher

    if config.email.enabled and config.email.recipients:
        from docstack_ops.alerts.mail import EmailSink

        dispatcher.add_sink(EmailSink(config.email, runner))
    if config.webhooks:
        from docstack_ops.alerts.webhook import WebhookSink

        for webhook in config.webhooks:
            dispatcher.add_sink(WebhookSink(webhook))
    return dispatcher
