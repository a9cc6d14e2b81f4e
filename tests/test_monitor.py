"""Tests for the failure tracker and the health monitor tick."""

from __future__ import annotations

import fcntl
import threading
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from docstack_ops.alerts.dispatcher import AlertDispatcher
from docstack_ops.alerts.log import AuditLog
from docstack_ops.alerts.models import AlertSeverity
from docstack_ops.config.models import DocstackConfig
from docstack_ops.monitor.daemon import HealthMonitor, format_outage
from docstack_ops.monitor.tracker import (
    COUNT_FILE,
    LOCK_FILE,
    STATUS_FILE,
    FailureTracker,
    FailureTrackerStore,
    TrackedStatus,
)
from docstack_ops.observer.models import ServiceObservation, ServiceState
from docstack_ops.observer.observer import ServiceObserver

from fakes import FakeCompose, exited, running

SERVICES = ["webserver", "db", "broker", "tika"]


class RecordingSink:
    name = "recorder"

    def __init__(self) -> None:
        self.events = []

    async def send(self, event) -> None:
        self.events.append(event)


def _monitor(
    config: DocstackConfig,
    compose: FakeCompose,
    sink: RecordingSink,
    threshold: int | None = None,
) -> HealthMonitor:
    dispatcher = AlertDispatcher([sink], AuditLog(config.alerting.audit_log))
    return HealthMonitor(
        ServiceObserver(compose),  # type: ignore[arg-type]
        config.descriptors,
        FailureTrackerStore(config.monitor.state_dir),
        dispatcher,
        failure_threshold=threshold or config.monitor.failure_threshold,
        stack_name=config.stack.name,
        host="docs01",
    )


# ─── FailureTrackerStore ───


class TestFailureTrackerStore:
    def test_defaults_when_missing(self, tmp_path: Path):
        tracker = FailureTrackerStore(tmp_path / "state").load()
        assert tracker == FailureTracker(0, TrackedStatus.HEALTHY)

    def test_round_trip_files(self, tmp_path: Path):
        store = FailureTrackerStore(tmp_path)
        store.save(FailureTracker(4, TrackedStatus.UNHEALTHY))
        assert (tmp_path / COUNT_FILE).read_text().strip() == "4"
        assert (tmp_path / STATUS_FILE).read_text().strip() == "unhealthy"
        assert store.load() == FailureTracker(4, TrackedStatus.UNHEALTHY)

    def test_corrupt_values(self, tmp_path: Path):
        (tmp_path / COUNT_FILE).write_text("lots\n")
        (tmp_path / STATUS_FILE).write_text("on fire\n")
        tracker = FailureTrackerStore(tmp_path).load()
        assert tracker.consecutive_failures == 0
        assert tracker.last_status is TrackedStatus.HEALTHY

    def test_locked_saves_on_exit(self, tmp_path: Path):
        store = FailureTrackerStore(tmp_path)
        with store.locked() as tracker:
            tracker.consecutive_failures = 2
        assert store.load().consecutive_failures == 2

    def test_locked_discards_on_error(self, tmp_path: Path):
        store = FailureTrackerStore(tmp_path)
        with pytest.raises(RuntimeError):
            with store.locked() as tracker:
                tracker.consecutive_failures = 9
                raise RuntimeError("tick crashed")
        assert store.load().consecutive_failures == 0

    def test_reset(self, tmp_path: Path):
        store = FailureTrackerStore(tmp_path)
        store.save(FailureTracker(7, TrackedStatus.UNHEALTHY))
        store.reset()
        assert store.load() == FailureTracker(0, TrackedStatus.HEALTHY)

    def test_concurrent_increments_serialize(self, tmp_path: Path):
        store = FailureTrackerStore(tmp_path)

        def bump() -> None:
            for _ in range(25):
                with FailureTrackerStore(tmp_path).locked() as tracker:
                    tracker.consecutive_failures += 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.load().consecutive_failures == 100


# ─── HealthMonitor ───


class TestTick:
    @pytest.mark.asyncio
    async def test_healthy_tick_sends_nothing(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        sink = RecordingSink()
        result = await _monitor(sample_config, fake_compose, sink).tick()

        assert result.all_healthy
        assert result.event is None
        assert sink.events == []
        assert result.tracker == FailureTracker(0, TrackedStatus.HEALTHY)

    @pytest.mark.asyncio
    async def test_running_without_health_check_counts_healthy(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("tika", running("tika"))
        result = await _monitor(sample_config, fake_compose, RecordingSink()).tick()
        assert result.all_healthy

    @pytest.mark.asyncio
    async def test_below_threshold_counts_but_stays_quiet(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        sink = RecordingSink()
        monitor = _monitor(sample_config, fake_compose, sink)

        first = await monitor.tick()
        second = await monitor.tick()

        assert first.tracker.consecutive_failures == 1
        assert second.tracker.consecutive_failures == 2
        assert second.tracker.last_status is TrackedStatus.HEALTHY
        assert sink.events == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ticks", [4, 6, 12])
    async def test_one_alert_per_outage(self, sample_config, fake_compose, ticks):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db", exit_code=137))
        sink = RecordingSink()
        monitor = _monitor(sample_config, fake_compose, sink)

        for _ in range(ticks):
            await monitor.tick()

        alerts = [e for e in sink.events if e.severity is AlertSeverity.ALERT]
        assert len(alerts) == 1
        assert "db" in alerts[0].body
        assert "exit code 137" in alerts[0].body
        assert alerts[0].host == "docs01"

        fake_compose.set_state("db", running("db"))
        await monitor.tick()
        await monitor.tick()

        recovered = [e for e in sink.events if e.severity is AlertSeverity.RECOVERED]
        assert len(recovered) == 1
        assert len(sink.events) == 2
        assert FailureTrackerStore(sample_config.monitor.state_dir).load() == FailureTracker(0, TrackedStatus.HEALTHY)

    @pytest.mark.asyncio
    async def test_blip_below_threshold_has_no_recovery(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"), running("db"))
        sink = RecordingSink()
        monitor = _monitor(sample_config, fake_compose, sink)

        await monitor.tick()
        result = await monitor.tick()
        assert result.tracker.consecutive_failures == 0
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_state_survives_new_monitor_instances(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("broker", running("broker", health="unhealthy"))
        sink = RecordingSink()

        for _ in range(5):
            await _monitor(sample_config, fake_compose, sink).tick()

        assert len(sink.events) == 1
        tracker = FailureTrackerStore(sample_config.monitor.state_dir).load()
        assert tracker.consecutive_failures == 5
        assert tracker.last_status is TrackedStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_alert_written_to_audit_log(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        monitor = _monitor(sample_config, fake_compose, RecordingSink(), threshold=1)
        result = await monitor.tick()

        entries = AuditLog(sample_config.alerting.audit_log).recent()
        assert len(entries) == 1
        assert entries[0]["severity"] == "alert"
        assert entries[0]["deliveries"] == {"recorder": "ok"}
        assert result.report is not None
        assert result.to_dict()["alert"] == "alert"

    @pytest.mark.asyncio
    async def test_failing_dispatch_still_records_state(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        sink = RecordingSink()
        sink.send = AsyncMock(side_effect=RuntimeError("smtp down"))  # type: ignore[method-assign]
        monitor = _monitor(sample_config, fake_compose, sink, threshold=1)

        result = await monitor.tick()
        assert result.report is not None
        assert "recorder" in result.report.failed
        assert result.tracker.last_status is TrackedStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_sinks_run_after_tracker_lock_released(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        store = FailureTrackerStore(sample_config.monitor.state_dir)
        seen = []

        class LockCheckingSink(RecordingSink):
            async def send(self, event) -> None:
                with open(store.state_dir / LOCK_FILE, "a+") as handle:
                    # raises BlockingIOError if the tick still holds the lock
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                seen.append(store.load())
                await super().send(event)

        sink = LockCheckingSink()
        result = await _monitor(sample_config, fake_compose, sink, threshold=1).tick()

        assert result.report is not None
        assert result.report.failed == {}
        assert len(sink.events) == 1
        assert seen == [FailureTracker(1, TrackedStatus.UNHEALTHY)]


class TestThresholdConfigurability:
    @pytest.mark.asyncio
    async def test_threshold_one_alerts_on_first_tick(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        sink = RecordingSink()
        result = await _monitor(sample_config, fake_compose, sink, threshold=1).tick()
        assert result.event is not None
        assert result.event.severity is AlertSeverity.ALERT
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_threshold_five_fires_on_fifth(self, sample_config, fake_compose):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("db", exited("db"))
        sink = RecordingSink()
        monitor = _monitor(sample_config, fake_compose, sink, threshold=5)

        for tick in range(1, 5):
            result = await monitor.tick()
            assert result.event is None, f"alert fired early on tick {tick}"
        assert sink.events == []

        fifth = await monitor.tick()
        assert fifth.event is not None
        assert fifth.tracker.consecutive_failures == 5
        assert len(sink.events) == 1


class TestFormatOutage:
    def test_lists_every_service(self):
        body = format_outage(
            [
                ServiceObservation("db", ServiceState.DOWN, "container exited"),
                ServiceObservation("broker", ServiceState.DEGRADED, "container healthcheck unhealthy"),
            ],
            3,
        )
        assert "2 service(s) unhealthy for 3 consecutive check(s)" in body
        assert "db: down (container exited)" in body
        assert "broker: degraded" in body
