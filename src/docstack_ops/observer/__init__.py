"""Service state observation."""

from __future__ import annotations

from docstack_ops.observer.models import ProbeOutcome, ProbeResult, ServiceObservation, ServiceState
from docstack_ops.observer.observer import ServiceObserver
from docstack_ops.observer.probes import HealthProbe, build_probe

__all__ = [
    "HealthProbe",
    "ProbeOutcome",
    "ProbeResult",
    "ServiceObservation",
    "ServiceObserver",
    "ServiceState",
    "build_probe",
]
