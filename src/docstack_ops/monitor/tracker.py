"""Durable failure tracker shared by successive monitor invocations."""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

COUNT_FILE = "failure_count"
STATUS_FILE = "last_status"
LOCK_FILE = "tracker.lock"


class TrackedStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class FailureTracker:
    """Outage memory: consecutive failed ticks and the last alerted status."""

    consecutive_failures: int = 0
    last_status: TrackedStatus = TrackedStatus.HEALTHY


class FailureTrackerStore:
    """Plain-text record, one value per file, rewritten whole on every save.

    ``locked()`` holds an exclusive ``flock`` for the whole read-modify-write
    so overlapping invocations serialize instead of racing.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self._dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._dir

    def load(self) -> FailureTracker:
        return FailureTracker(
            consecutive_failures=self._read_count(),
            last_status=self._read_status(),
        )

    def save(self, tracker: FailureTracker) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self._write(COUNT_FILE, str(max(tracker.consecutive_failures, 0)))
        self._write(STATUS_FILE, tracker.last_status.value)

    def reset(self) -> FailureTracker:
        with self.locked() as tracker:
            tracker.consecutive_failures = 0
            tracker.last_status = TrackedStatus.HEALTHY
        return tracker

    @contextlib.contextmanager
    def locked(self) -> Iterator[FailureTracker]:
        """Yield the current tracker under lock; save it on clean exit."""
        self._dir.mkdir(parents=True, exist_ok=True)
        with open(self._dir / LOCK_FILE, "a+") as lock_handle:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
            try:
                tracker = self.load()
                yield tracker
                self.save(tracker)
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def _read_count(self) -> int:
        path = self._dir / COUNT_FILE
        if not path.exists():
            return 0
        raw = path.read_text(encoding="utf-8").strip()
        try:
            return max(int(raw), 0)
        except ValueError:
            logger.warning("Corrupt failure counter %r in %s, starting from 0", raw, path)
            return 0

    def _read_status(self) -> TrackedStatus:
        path = self._dir / STATUS_FILE
        if not path.exists():
            return TrackedStatus.HEALTHY
        raw = path.read_text(encoding="utf-8").strip().lower()
        try:
            return TrackedStatus(raw)
        except ValueError:
            logger.warning("Corrupt last status %r in %s, assuming healthy", raw, path)
            return TrackedStatus.HEALTHY

    def _write(self, filename: str, value: str) -> None:
        path = self._dir / filename
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value + "\n", encoding="utf-8")
        os.replace(tmp, path)
