"""Tests for the three-phase readiness orchestrator."""

from __future__ import annotations

import pytest

from docstack_ops.config.models import DocstackConfig, ServiceDescriptor
from docstack_ops.observer.models import ServiceState
from docstack_ops.observer.observer import ServiceObserver
from docstack_ops.readiness.models import ReadinessOutcome
from docstack_ops.readiness.orchestrator import (
    PHASE_FUNCTIONAL,
    PHASE_HEALTHY,
    PHASE_RUNNING,
    ReadinessOrchestrator,
)

from fakes import FakeCompose, SleepRecorder, exited, fail, running

SERVICES = ["webserver", "db", "broker", "tika"]


def _orchestrator(config: DocstackConfig, compose: FakeCompose, sleep: SleepRecorder) -> ReadinessOrchestrator:
    return ReadinessOrchestrator.from_config(config, ServiceObserver(compose), compose, sleep=sleep)  # type: ignore[arg-type]


async def _await(config: DocstackConfig, compose: FakeCompose, sleep: SleepRecorder, **budgets: int):
    r = config.readiness
    return await _orchestrator(config, compose, sleep).await_ready(
        config.descriptors,
        budgets.get("running", r.running_budget),
        budgets.get("healthy", r.healthy_budget),
        budgets.get("functional", r.functional_budget),
    )


def _fail_db_probe(service, command, **kw):
    if command[0] == "pg_isready":
        return fail("no response", returncode=2)
    return None


# ─── Happy path ───


class TestAllHealthy:
    @pytest.mark.asyncio
    async def test_everything_up(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        result = await _await(sample_config, fake_compose, sleep)

        assert result.outcome is ReadinessOutcome.ALL_HEALTHY
        assert result.all_healthy
        assert [p.attempts for p in result.phases] == [1, 1, 1]
        assert sleep.delays == []
        assert result.not_ready == {}
        assert ("exec", "webserver", ("python3", "manage.py", "check")) in fake_compose.calls

    @pytest.mark.asyncio
    async def test_slow_start_polls_at_fixed_cadence(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("broker", None, None, running("broker", health="healthy"))
        result = await _await(sample_config, fake_compose, sleep)

        assert result.all_healthy
        assert result.phase(PHASE_RUNNING).attempts == 3
        assert sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_only_pending_services_repolled(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("broker", None, running("broker", health="healthy"))
        await _await(sample_config, fake_compose, sleep)

        running_phase_queries = [c for c in fake_compose.named("ps")][:5]
        assert running_phase_queries == [
            ("ps", "webserver"),
            ("ps", "db"),
            ("ps", "broker"),
            ("ps", "tika"),
            ("ps", "broker"),
        ]

    @pytest.mark.asyncio
    async def test_health_pending_then_healthy(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state(
            "broker",
            running("broker", health="starting"),
            running("broker", health="starting"),
            running("broker", health="healthy"),
        )
        result = await _await(sample_config, fake_compose, sleep)
        assert result.all_healthy
        assert result.phase(PHASE_HEALTHY).attempts == 2

    @pytest.mark.asyncio
    async def test_no_functional_check_configured(self, sample_config, fake_compose, sleep):
        config = sample_config.model_copy(
            update={"readiness": sample_config.readiness.model_copy(update={"functional_check": []})}
        )
        fake_compose.all_running(SERVICES)
        result = await _await(config, fake_compose, sleep)
        assert result.all_healthy
        functional = result.phase(PHASE_FUNCTIONAL)
        assert functional.skipped
        assert functional.attempts == 0


# ─── Timeouts and failure ───


class TestBoundedTimeouts:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("budget", [1, 2, 5, 9])
    async def test_running_phase_never_exceeds_budget(self, sample_config, fake_compose, sleep, budget):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("tika", exited("tika"))
        result = await _await(sample_config, fake_compose, sleep, running=budget)

        phase = result.phase(PHASE_RUNNING)
        assert phase.attempts == budget
        assert fake_compose.named("ps").count(("ps", "tika")) == budget
        assert len(sleep.delays) == budget - 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("budget", [1, 3, 7])
    async def test_healthy_phase_never_exceeds_budget(self, sample_config, fake_compose, sleep, budget):
        fake_compose.all_running(SERVICES)
        fake_compose.exec_handler = _fail_db_probe
        result = await _await(sample_config, fake_compose, sleep, healthy=budget)

        assert result.phase(PHASE_HEALTHY).attempts == budget
        assert result.outcome is ReadinessOutcome.PARTIAL_TIMEOUT

    @pytest.mark.asyncio
    async def test_functional_phase_never_exceeds_budget(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)

        def broken_app(service, command, **kw):
            if command[0] == "python3":
                return fail("django.db.utils.OperationalError: connection refused")
            return None

        fake_compose.exec_handler = broken_app
        result = await _await(sample_config, fake_compose, sleep)

        functional = result.phase(PHASE_FUNCTIONAL)
        assert functional.attempts == 3
        assert functional.timed_out
        assert result.outcome is ReadinessOutcome.PARTIAL_TIMEOUT
        assert "functional check failed" in result.not_ready["webserver"]
        assert "OperationalError" in result.not_ready["webserver"]

    @pytest.mark.asyncio
    async def test_zero_running_budget_returns_failed(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        result = await _await(sample_config, fake_compose, sleep, running=0)

        assert result.outcome is ReadinessOutcome.FAILED
        assert result.phase(PHASE_RUNNING).attempts == 0
        assert result.not_ready["webserver"] == "running: not polled (budget 0)"
        assert fake_compose.named("ps") == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_healthy_and_functional_budgets_are_partial(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        result = await _await(sample_config, fake_compose, sleep, healthy=0, functional=0)

        assert result.outcome is ReadinessOutcome.PARTIAL_TIMEOUT
        assert result.phase(PHASE_HEALTHY).attempts == 0
        assert result.phase(PHASE_FUNCTIONAL).attempts == 0
        assert result.not_ready["webserver"].startswith("healthy: ")
        assert "db" in result.not_ready
        assert result.phase(PHASE_FUNCTIONAL).pending == {"webserver": "functional check not run (budget 0)"}
        assert ("exec", "webserver", ("python3", "manage.py", "check")) not in fake_compose.calls

    @pytest.mark.asyncio
    async def test_non_primary_never_up_is_partial(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("tika", exited("tika", exit_code=1))
        result = await _await(sample_config, fake_compose, sleep)

        assert result.outcome is ReadinessOutcome.PARTIAL_TIMEOUT
        assert "tika" in result.not_ready
        assert "exit code 1" in result.not_ready["tika"]
        assert not result.phase(PHASE_HEALTHY).skipped

    @pytest.mark.asyncio
    async def test_primary_never_up_is_failed(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.set_state("webserver", exited("webserver"))
        result = await _await(sample_config, fake_compose, sleep)

        assert result.outcome is ReadinessOutcome.FAILED
        assert result.failed
        assert result.phase(PHASE_HEALTHY).skipped
        assert result.phase(PHASE_FUNCTIONAL).skipped
        assert "webserver" in result.not_ready

    @pytest.mark.asyncio
    async def test_nothing_up_without_primary_is_failed(self, sample_config, fake_compose, sleep):
        config = sample_config.model_copy(update={"primary_service": ""})
        result = await _await(config, fake_compose, sleep, running=2)
        assert result.outcome is ReadinessOutcome.FAILED
        assert set(result.not_ready) == set(SERVICES)

    @pytest.mark.asyncio
    async def test_runtime_unreachable_never_raises(self, sample_config, fake_compose, sleep):
        for name in SERVICES:
            fake_compose.set_state(name, RuntimeError("docker daemon gone"))
        result = await _await(sample_config, fake_compose, sleep, running=2)
        assert result.failed
        assert all(obs.state is ServiceState.DOWN for obs in result.observations.values())

    @pytest.mark.asyncio
    async def test_unknown_service_treated_as_down(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        services = [*sample_config.descriptors, ServiceDescriptor(name="ghost")]
        result = await _orchestrator(sample_config, fake_compose, sleep).await_ready(services, 2, 2, 2)
        assert result.outcome is ReadinessOutcome.PARTIAL_TIMEOUT
        assert result.observations["ghost"].state is ServiceState.NOT_FOUND


# ─── Monotonicity ───


class TestNeverFalselyHealthy:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "broken",
        [
            ("db", "degraded"),
            ("broker", "unhealthy"),
            ("broker", "exited"),
            ("webserver", "degraded"),
        ],
    )
    async def test_checked_service_not_healthy_blocks_all_healthy(self, sample_config, fake_compose, sleep, broken):
        service, how = broken
        fake_compose.all_running(SERVICES)
        if how == "degraded":
            probe_program = "pg_isready" if service == "db" else "curl"
            fake_compose.exec_handler = (
                lambda svc, command, **kw: fail("probe failed") if command[0] == probe_program else None
            )
        elif how == "unhealthy":
            fake_compose.set_state(service, running(service, health="unhealthy"))
        else:
            fake_compose.set_state(service, exited(service))

        result = await _await(sample_config, fake_compose, sleep, running=3, healthy=3)

        assert result.outcome is not ReadinessOutcome.ALL_HEALTHY
        assert result.observations[service].state in (ServiceState.DEGRADED, ServiceState.DOWN)
        assert service in result.not_ready

    @pytest.mark.asyncio
    async def test_summary_names_services(self, sample_config, fake_compose, sleep):
        fake_compose.all_running(SERVICES)
        fake_compose.exec_handler = _fail_db_probe
        result = await _await(sample_config, fake_compose, sleep, healthy=2)
        summary = result.summary()
        assert "partial timeout" in summary
        assert "db" in summary
        assert result.to_dict()["outcome"] == "partial_timeout"
