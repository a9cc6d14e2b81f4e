"""Alert fan-out: dispatcher, sinks and audit log."""

from __future__ import annotations

from docstack_ops.alerts.dispatcher import (
    AlertDeliveryError,
    AlertDispatcher,
    AlertSink,
    DispatchReport,
    create_dispatcher,
)
from docstack_ops.alerts.log import AuditLog
from docstack_ops.alerts.models import AlertEvent, AlertSeverity

__all__ = [
    "AlertDeliveryError",
    "AlertDispatcher",
    "AlertEvent",
    "AlertSeverity",
    "AlertSink",
    "AuditLog",
    "DispatchReport",
    "create_dispatcher",
]
