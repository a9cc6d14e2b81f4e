"""Cron-driven health monitoring."""

from __future__ import annotations

from docstack_ops.monitor.daemon import HealthMonitor, TickResult
from docstack_ops.monitor.tracker import FailureTracker, FailureTrackerStore, TrackedStatus

__all__ = ["FailureTracker", "FailureTrackerStore", "HealthMonitor", "TickResult", "TrackedStatus"]
