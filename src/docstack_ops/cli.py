"""docstack CLI entry point."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

if TYPE_CHECKING:
    from docstack_ops.config.models import DocstackConfig
    from docstack_ops.context import Docstack
    from docstack_ops.operations.models import OperationResult
    from docstack_ops.readiness.models import ReadinessResult

app = typer.Typer(
    name="docstack",
    help="Operator console for a Docker Compose document-management stack",
    no_args_is_help=True,
)
console = Console()

STATE_STYLES = {
    "healthy": "green",
    "running": "green",
    "starting": "yellow",
    "degraded": "yellow",
    "down": "red",
    "not_found": "red",
}

CRON_SCHEDULE = [
    ("*/5 * * * *", "monitor tick", "health check"),
    ("30 2 * * *", "backup create --tier quick", "nightly quick backup"),
    ("0 3 * * 0", "backup create --tier full", "weekly full backup"),
    ("0 4 * * *", "backup prune", "retention cleanup"),
]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Path to .docstack.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _setup_logging(verbose)
    ctx.obj = {"config_path": config_path}


def _load(ctx: typer.Context) -> DocstackConfig:
    from docstack_ops.config.loader import load_config

    try:
        return load_config(path=(ctx.obj or {}).get("config_path"))
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)


def _context(ctx: typer.Context) -> Docstack:
    from docstack_ops.context import build_context

    return build_context(_load(ctx))


def _styled(state: str) -> str:
    style = STATE_STYLES.get(state, "white")
    return f"[{style}]{state}[/{style}]"


def _print_readiness(result: ReadinessResult) -> None:
    table = Table(title="Readiness")
    table.add_column("Phase", style="bold")
    table.add_column("Attempts", justify="right")
    table.add_column("Result")
    for phase in result.phases:
        if phase.skipped:
            label = "[dim]skipped[/dim]"
        elif phase.satisfied:
            label = "[green]ok[/green]"
        else:
            label = "[yellow]timed out[/yellow]"
        table.add_row(phase.name, f"{phase.attempts}/{phase.budget}", label)
    console.print(table)

    for service, detail in result.not_ready.items():
        console.print(f"  [yellow]![/yellow] {service}: {detail}")

    if result.all_healthy:
        console.print("[green bold]All services ready.[/green bold]")
    elif result.failed:
        console.print(f"[red bold]{result.summary()}[/red bold]")
    else:
        console.print(f"[yellow bold]{result.summary()}[/yellow bold]")


def _print_operation(result: OperationResult) -> None:
    console.print(f"\n[bold]Operation:[/bold] {result.operation}")
    for step in result.steps:
        if step.skipped:
            icon = "[dim]⊘[/dim]"
        elif step.success:
            icon = "[green]✓[/green]"
        else:
            icon = "[red]✗[/red]"
        console.print(f"  {icon} {step.name}")
        if step.error:
            console.print(f"    [red]{step.error}[/red]")
        if step.skipped and step.data.get("message"):
            console.print(f"    [dim]{step.data['message']}[/dim]")
    if result.readiness is not None:
        _print_readiness(result.readiness)


def _finish_operation(result: OperationResult) -> None:
    _print_operation(result)
    if not result.success:
        raise typer.Exit(1)


# ─── Stack ───


@app.command()
def status(ctx: typer.Context) -> None:
    """Observe every service and print its state."""
    docstack = _context(ctx)
    observations = asyncio.run(docstack.observer.observe_all(docstack.config.descriptors))

    table = Table(title=f"{docstack.config.stack.name} services")
    table.add_column("Service", style="bold")
    table.add_column("Role")
    table.add_column("State")
    table.add_column("Detail")
    for obs in observations:
        descriptor = docstack.config.services[obs.service]
        table.add_row(obs.service, descriptor.role.value, _styled(obs.state.value), obs.detail)
    console.print(table)


@app.command()
def up(ctx: typer.Context) -> None:
    """Start the stack and wait until it is ready."""
    _finish_operation(asyncio.run(_context(ctx).operations.start()))


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop every service."""
    _finish_operation(asyncio.run(_context(ctx).operations.stop()))


@app.command()
def restart(ctx: typer.Context) -> None:
    """Restart the stack and wait until it is ready."""
    _finish_operation(asyncio.run(_context(ctx).operations.restart()))


@app.command()
def update(ctx: typer.Context) -> None:
    """Back up, pull new images, recreate containers and wait until ready."""
    _finish_operation(asyncio.run(_context(ctx).operations.update()))


@app.command()
def wait(
    ctx: typer.Context,
    running_budget: int | None = typer.Option(None, min=1, help="Attempts for services to start"),
    healthy_budget: int | None = typer.Option(None, min=1, help="Attempts for probes to pass"),
    functional_budget: int | None = typer.Option(None, min=1, help="Attempts for the functional check"),
) -> None:
    """Wait for the running stack to become ready."""
    docstack = _context(ctx)
    readiness = docstack.config.readiness
    result = asyncio.run(docstack.orchestrator.await_ready(
        docstack.config.descriptors,
        running_budget if running_budget is not None else readiness.running_budget,
        healthy_budget if healthy_budget is not None else readiness.healthy_budget,
        functional_budget if functional_budget is not None else readiness.functional_budget,
    ))
    _print_readiness(result)
    if result.failed:
        raise typer.Exit(1)


@app.command()
def cron(
    ctx: typer.Context,
    executable: str | None = typer.Option(None, help="Command to schedule (defaults to the installed docstack)"),
) -> None:
    """Print crontab lines for monitoring, backups and retention."""
    command = executable or shutil.which("docstack") or "docstack"
    config_path = (ctx.obj or {}).get("config_path")
    if config_path is not None:
        command = f"{command} --config {Path(config_path).resolve()}"
    for schedule, args, comment in CRON_SCHEDULE:
        console.print(f"# {comment}", markup=False, highlight=False, soft_wrap=True)
        console.print(f"{schedule} {command} {args}", markup=False, highlight=False, soft_wrap=True)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", help="Bind host"),
    port: int = typer.Option(8000, help="Bind port"),
) -> None:
    """Start the status API server."""
    import uvicorn

    from docstack_ops.api.app import create_app

    docstack = _context(ctx)
    console.print(f"[bold]docstack[/bold] status API on http://{host}:{port}")
    uvicorn.run(create_app(context=docstack), host=host, port=port)


# ─── Monitor ───

monitor_app = typer.Typer(name="monitor", help="Health monitor commands")
app.add_typer(monitor_app)


@monitor_app.command("tick")
def monitor_tick(ctx: typer.Context) -> None:
    """Run one health check (scheduler entrypoint)."""
    result = asyncio.run(_context(ctx).monitor.tick())
    if result.all_healthy:
        console.print("[green]All services healthy.[/green]")
    else:
        for obs in result.unhealthy:
            console.print(f"[red]✗[/red] {obs.service}: {obs.state.value} ({obs.detail})")
        console.print(f"Consecutive failures: {result.tracker.consecutive_failures}")
    if result.event is not None:
        console.print(f"[bold]Dispatched {result.event.severity.value}:[/bold] {result.event.title}")
        if result.report is not None:
            for sink, outcome in result.report.deliveries.items():
                console.print(f"  {sink}: {outcome}")


@monitor_app.command("status")
def monitor_status(ctx: typer.Context) -> None:
    """Show the persisted failure tracker."""
    docstack = _context(ctx)
    tracker = docstack.store.load()
    style = "green" if tracker.last_status.value == "healthy" else "red"
    console.print(f"Last status: [{style}]{tracker.last_status.value}[/{style}]")
    console.print(f"Consecutive failures: {tracker.consecutive_failures}/{docstack.monitor.failure_threshold}")
    console.print(f"State directory: {docstack.store.state_dir}")


@monitor_app.command("reset")
def monitor_reset(ctx: typer.Context) -> None:
    """Clear the failure tracker."""
    _context(ctx).store.reset()
    console.print("[green]Failure tracker reset.[/green]")


# ─── Alerts ───

alert_app = typer.Typer(name="alert", help="Alerting commands")
app.add_typer(alert_app)


@alert_app.command("test")
def alert_test(ctx: typer.Context) -> None:
    """Send a test alert through every configured sink."""
    from docstack_ops.alerts.models import AlertEvent, AlertSeverity

    docstack = _context(ctx)
    host = docstack.config.alerting.host_name
    event = AlertEvent(
        title=f"{docstack.config.stack.name}: test alert",
        body="Test notification from docstack. If you can read this, alert delivery works.",
        severity=AlertSeverity.TEST,
        **({"host": host} if host else {}),
    )
    report = asyncio.run(docstack.dispatcher.dispatch(event))
    if not report.deliveries:
        console.print("[yellow]No alert sinks configured; event written to the audit log only.[/yellow]")
        return
    for sink, outcome in report.deliveries.items():
        icon = "[green]✓[/green]" if sink in report.delivered else "[red]✗[/red]"
        console.print(f"  {icon} {sink}: {outcome}")
    if report.failed:
        raise typer.Exit(1)


@alert_app.command("log")
def alert_log(
    ctx: typer.Context,
    limit: int = typer.Option(20, help="Number of entries"),
    severity: str | None = typer.Option(None, help="Only alert, recovered or test"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON lines"),
) -> None:
    """Show recent dispatched alerts."""
    entries = _context(ctx).audit_log.recent(limit=limit, severity=severity)
    if as_json:
        for entry in entries:
            console.print(json.dumps(entry), markup=False, highlight=False, soft_wrap=True)
        return

    table = Table(title="Alert log")
    table.add_column("Time")
    table.add_column("Severity")
    table.add_column("Title")
    table.add_column("Deliveries")
    for entry in entries:
        deliveries = ", ".join(f"{k}={v}" for k, v in entry.get("deliveries", {}).items()) or "-"
        table.add_row(entry.get("timestamp", ""), entry.get("severity", ""), entry.get("title", ""), deliveries)
    console.print(table)


# ─── Backups ───

backup_app = typer.Typer(name="backup", help="Backup and restore commands")
app.add_typer(backup_app)


@backup_app.command("create")
def backup_create(
    ctx: typer.Context,
    tier: str = typer.Option("quick", "--tier", "-t", help="quick or full"),
) -> None:
    """Take a backup."""
    from docstack_ops.backup.models import BackupTier

    try:
        backup_tier = BackupTier(tier)
    except ValueError:
        console.print(f"[red]Unknown tier: {tier} (expected quick or full)[/red]")
        raise typer.Exit(1)

    manifest = asyncio.run(_context(ctx).backups.snapshot(backup_tier))
    console.print(f"[bold]Backup:[/bold] {manifest.backup_id} ({manifest.size_bytes} bytes)")
    for artifact in manifest.artifacts:
        console.print(f"  [green]✓[/green] {artifact.kind.value}: {artifact.filename}")
    for warning in manifest.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    if not manifest.artifacts:
        raise typer.Exit(1)


@backup_app.command("list")
def backup_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, help="Number of backups"),
) -> None:
    """List catalogued backups, newest first."""
    entries = asyncio.run(_context(ctx).catalog.list_recent(limit=limit))
    table = Table(title="Backups")
    table.add_column("ID", style="bold")
    table.add_column("Tier")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    table.add_column("Artifacts")
    table.add_column("Complete")
    for entry in entries:
        m = entry.manifest
        complete = "[green]yes[/green]" if m.complete else f"[yellow]{len(m.warnings)} warning(s)[/yellow]"
        table.add_row(
            m.backup_id,
            m.tier.value,
            m.created_at.strftime("%Y-%m-%d %H:%M"),
            str(m.size_bytes),
            ", ".join(k.value for k in m.kinds),
            complete,
        )
    console.print(table)


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    backup_id: str = typer.Argument(help="Backup to restore"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Restore a backup. Stops the stack and replaces the database."""
    from docstack_ops.backup.controller import RestoreError

    docstack = _context(ctx)
    try:
        manifest = docstack.backups.load_manifest(backup_id)
    except RestoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if not yes:
        typer.confirm(
            f"Restore {backup_id} ({', '.join(k.value for k in manifest.kinds)})? This replaces current data",
            abort=True,
        )

    try:
        result = asyncio.run(docstack.backups.restore(manifest))
    except RestoreError as exc:
        console.print(f"[red bold]Restore failed:[/red bold] {exc}")
        console.print("[yellow]Services were left stopped for inspection.[/yellow]")
        raise typer.Exit(1)
    _finish_operation(result)


@backup_app.command("prune")
def backup_prune(
    ctx: typer.Context,
    keep_last: int | None = typer.Option(None, help="Keep this many newest backups"),
    max_age_days: int | None = typer.Option(None, help="Delete backups older than this"),
) -> None:
    """Apply the retention policy."""
    removed = asyncio.run(_context(ctx).backups.prune(keep_last, max_age_days))
    if not removed:
        console.print("Nothing to prune.")
        return
    for backup_id in removed:
        console.print(f"  [dim]removed[/dim] {backup_id}")


# ─── Config ───

config_app = typer.Typer(name="config", help="Configuration commands")
app.add_typer(config_app)


@config_app.command("validate")
def config_validate(ctx: typer.Context) -> None:
    """Validate the configuration file."""
    import yaml

    from docstack_ops.config.loader import load_config

    try:
        config = load_config(path=(ctx.obj or {}).get("config_path"))
        console.print("[green]✓[/green] YAML parses correctly")
        console.print("[green]✓[/green] Pydantic validation passes")
    except FileNotFoundError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(1)
    except yaml.YAMLError as exc:
        console.print(f"[red]✗ YAML parsing failed: {exc}[/red]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print("[green]✓[/green] YAML parses correctly")
        console.print(f"[red]✗ Pydantic validation failed: {exc}[/red]")
        raise typer.Exit(1)

    errors: list[str] = []
    warnings: list[str] = []
    if not config.services:
        errors.append("No services configured")
    if config.primary_service and config.primary_service not in config.services:
        errors.append(f"primary_service '{config.primary_service}' is not a configured service")
    if config.database.service not in config.services:
        warnings.append(f"database service '{config.database.service}' is not a configured service")
    if config.readiness.functional_check and not config.primary_service:
        warnings.append("functional_check is set but no primary_service; it will be skipped")
    if config.alerting.email.enabled and not config.alerting.email.recipients:
        warnings.append("email alerts enabled without recipients")
    compose_file = Path(config.stack.project_dir) / config.stack.compose_file
    if not compose_file.exists():
        warnings.append(f"compose file {compose_file} not found")

    if not errors:
        probed = sum(1 for s in config.descriptors if s.has_probe)
        console.print(f"[green]✓[/green] {len(config.services)} service(s), {probed} with probes")
        if config.alerting.webhooks:
            console.print(f"[green]✓[/green] {len(config.alerting.webhooks)} webhook(s) configured")
        for w in warnings:
            console.print(f"[yellow]! {w}[/yellow]")
        console.print("\n[green bold]Configuration is valid.[/green bold]")
    else:
        for err in errors:
            console.print(f"[red]✗ {err}[/red]")
        console.print(f"\n[red bold]{len(errors)} validation error(s) found.[/red bold]")
        raise typer.Exit(1)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print resolved configuration."""
    config = _load(ctx)

    console.print(f"[bold]Stack[/bold] {config.stack.name} ({config.stack.project_dir})\n")

    console.print("[bold]Services:[/bold]")
    for key, svc in config.services.items():
        probe = svc.probe.type if svc.probe else "none"
        marker = " [primary]" if key == config.primary_service else ""
        console.print(f"  {key}: {svc.role.value}, probe={probe}{marker}", markup=False)

    r = config.readiness
    console.print("\n[bold]Readiness:[/bold]")
    console.print(f"  Budgets: running={r.running_budget} healthy={r.healthy_budget} functional={r.functional_budget}")
    console.print(f"  Poll interval: {r.poll_interval}s")

    console.print("\n[bold]Monitor:[/bold]")
    console.print(f"  Failure threshold: {config.monitor.failure_threshold}")
    console.print(f"  State directory: {config.monitor.state_dir}")

    console.print("\n[bold]Alerting:[/bold]")
    console.print(f"  Enabled: {config.alerting.enabled}")
    console.print(f"  Email: {', '.join(config.alerting.email.recipients) if config.alerting.email.enabled else 'off'}")
    console.print(f"  Webhooks: {len(config.alerting.webhooks)}")

    console.print("\n[bold]Backups:[/bold]")
    console.print(f"  Directory: {config.backup.directory}")
    console.print(f"  Retention: keep_last={config.backup.keep_last} max_age_days={config.backup.max_age_days}")


def main() -> None:
    app()
