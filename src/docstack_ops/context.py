"""Wire the components for one configured stack."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from docstack_ops.alerts.dispatcher import AlertDispatcher, create_dispatcher
from docstack_ops.alerts.log import AuditLog
from docstack_ops.backup.catalog import BackupCatalog, SqliteCatalog
from docstack_ops.backup.controller import ConsistencyController
from docstack_ops.config.models import DocstackConfig
from docstack_ops.monitor.daemon import HealthMonitor
from docstack_ops.monitor.tracker import FailureTrackerStore
from docstack_ops.observer.observer import ServiceObserver
from docstack_ops.operations.lifecycle import StackOperations
from docstack_ops.readiness.orchestrator import ReadinessOrchestrator
from docstack_ops.runtime.compose import ComposeClient
from docstack_ops.runtime.runner import ProcessRunner


@dataclass
class Docstack:
    """Every long-lived component, built once per command or API app."""

    config: DocstackConfig
    runner: ProcessRunner
    compose: ComposeClient
    observer: ServiceObserver
    orchestrator: ReadinessOrchestrator
    store: FailureTrackerStore
    audit_log: AuditLog
    dispatcher: AlertDispatcher
    catalog: BackupCatalog
    backups: ConsistencyController
    operations: StackOperations
    monitor: HealthMonitor


def catalog_path(config: DocstackConfig) -> Path:
    path = Path(config.backup.catalog_db)
    return path if path.is_absolute() else Path(config.backup.directory) / path


def build_context(
    config: DocstackConfig,
    *,
    runner: ProcessRunner | None = None,
    compose: ComposeClient | None = None,
    catalog: BackupCatalog | None = None,
    dispatcher: AlertDispatcher | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Docstack:
    runner = runner or ProcessRunner()
    compose = compose or ComposeClient(config.stack, runner)
    observer = ServiceObserver(compose, query_timeout=config.readiness.query_timeout)
    orchestrator = ReadinessOrchestrator.from_config(config, observer, compose, sleep=sleep)
    store = FailureTrackerStore(config.monitor.state_dir)
    dispatcher = dispatcher or create_dispatcher(config.alerting, runner)
    audit_log = dispatcher.audit_log or AuditLog(config.alerting.audit_log)
    catalog = catalog if catalog is not None else SqliteCatalog(str(catalog_path(config)))
    backups = ConsistencyController(config, compose, orchestrator, catalog, sleep=sleep)
    operations = StackOperations(config, compose, orchestrator, backups)
    monitor = HealthMonitor(
        observer,
        config.descriptors,
        store,
        dispatcher,
        failure_threshold=config.monitor.failure_threshold,
        stack_name=config.stack.name,
        host=config.alerting.host_name,
    )
    return Docstack(
        config=config,
        runner=runner,
        compose=compose,
        observer=observer,
        orchestrator=orchestrator,
        store=store,
        audit_log=audit_log,
        dispatcher=dispatcher,
        catalog=catalog,
        backups=backups,
        operations=operations,
        monitor=monitor,
    )
