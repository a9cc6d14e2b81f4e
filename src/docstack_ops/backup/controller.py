"""Backup/restore consistency controller.

Snapshots capture the database dump and configuration live, then (full tier
only) stop the primary application service while media is archived so no
write lands in the files being captured. Restores run the inverse sequence
and hand the stack to the readiness orchestrator before declaring success.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from docstack_ops.backup import archive
from docstack_ops.backup.catalog import BackupCatalog
from docstack_ops.backup.models import (
    MANIFEST_FILENAME,
    ArtifactKind,
    BackupArtifact,
    BackupManifest,
    BackupTier,
)
from docstack_ops.config.models import DocstackConfig
from docstack_ops.operations.models import OperationResult, StepResult
from docstack_ops.readiness.orchestrator import ReadinessOrchestrator
from docstack_ops.runtime.compose import ComposeClient

logger = logging.getLogger(__name__)

DATABASE_FILE = "database.sql"
CONFIG_FILE = "config.tar.gz"
MEDIA_FILE = "media.tar.gz"

SleepFn = Callable[[float], Awaitable[None]]


class RestoreError(RuntimeError):
    """A restore cannot continue safely."""


class ConsistencyController:
    """Orchestrates stop-snapshot-restart around backup and restore."""

    def __init__(
        self,
        config: DocstackConfig,
        compose: ComposeClient,
        orchestrator: ReadinessOrchestrator,
        catalog: BackupCatalog | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._config = config
        self._compose = compose
        self._orchestrator = orchestrator
        self._catalog = catalog
        self._sleep = sleep
        self._clock = clock

    @property
    def backup_root(self) -> Path:
        return Path(self._config.backup.directory)

    @property
    def project_dir(self) -> Path:
        return Path(self._config.stack.project_dir)

    @property
    def media_dir(self) -> Path:
        media = Path(self._config.backup.media_dir)
        return media if media.is_absolute() else self.project_dir / media

    def backup_dir(self, backup_id: str) -> Path:
        return self.backup_root / backup_id

    # ─── snapshot ───

    def _new_backup_id(self, tier: BackupTier, created_at: datetime) -> str:
        base = f"{self._config.stack.name}-{tier.value}-{created_at:%Y%m%d-%H%M%S}"
        backup_id, n = base, 1
        while self.backup_dir(backup_id).exists():
            n += 1
            backup_id = f"{base}-{n}"
        return backup_id

    def _artifact(self, kind: ArtifactKind, path: Path) -> BackupArtifact:
        return BackupArtifact(
            kind=kind,
            filename=path.name,
            size_bytes=path.stat().st_size,
            sha256=archive.sha256_file(path),
        )

    async def _dump_database(self, directory: Path, warnings: list[str]) -> BackupArtifact | None:
        db = self._config.database
        dump_path = directory / DATABASE_FILE
        try:
            result = await self._compose.exec(
                db.service,
                ["pg_dump", "-U", db.user, "-d", db.name],
                timeout=db.dump_timeout,
                stdout_path=dump_path,
            )
        except Exception as exc:
            warnings.append(f"database dump failed: {exc}")
            logger.warning("Database dump failed: %s", exc)
            return None
        if not result.ok:
            warnings.append(f"database dump failed: {result.error_text}")
            logger.warning("Database dump failed: %s", result.error_text)
            dump_path.unlink(missing_ok=True)
            return None
        if not dump_path.exists() or dump_path.stat().st_size == 0:
            warnings.append("database dump is empty")
            logger.warning("Database dump of %s produced no output", db.name)
            dump_path.unlink(missing_ok=True)
            return None
        return self._artifact(ArtifactKind.DATABASE, dump_path)

    async def _archive_config(self, directory: Path, warnings: list[str]) -> BackupArtifact | None:
        names = self._config.backup.config_files
        present = [n for n in names if (self.project_dir / n).exists()]
        missing = sorted(set(names) - set(present))
        if missing:
            warnings.append(f"config files not found: {', '.join(missing)}")
        if not present:
            return None
        target = directory / CONFIG_FILE
        try:
            await asyncio.to_thread(archive.archive_files, target, self.project_dir, present)
        except OSError as exc:
            self._discard(target, "config", exc, warnings)
            return None
        return self._artifact(ArtifactKind.CONFIG, target)

    def _discard(self, target: Path, what: str, exc: OSError, warnings: list[str]) -> None:
        warnings.append(f"{what} archive failed: {exc}")
        logger.error("Archiving %s into %s failed: %s", what, target, exc)
        target.unlink(missing_ok=True)

    async def _archive_media(self, directory: Path, warnings: list[str]) -> tuple[BackupArtifact | None, bool]:
        """Archive media with the primary service stopped. Returns (artifact, consistent)."""
        media = self.media_dir
        if not archive.is_non_empty_dir(media):
            warnings.append(f"media directory {media} is missing or empty")
            return None, False

        primary = self._config.primary_service
        consistent = False
        if primary:
            stop = await self._compose.stop([primary])
            consistent = stop.ok
            if not stop.ok:
                warnings.append(f"could not stop {primary} before archiving media: {stop.error_text}")
        else:
            warnings.append("no primary service configured; media archived live")

        target = directory / MEDIA_FILE
        archived = False
        try:
            await asyncio.to_thread(archive.archive_directory, target, media)
            archived = True
        except OSError as exc:
            self._discard(target, "media", exc, warnings)
        finally:
            if primary:
                start = await self._compose.start([primary])
                if not start.ok:
                    warnings.append(f"could not restart {primary}: {start.error_text}")
                    logger.error("Failed to restart %s after media archive: %s", primary, start.error_text)
        if not archived:
            return None, False
        return self._artifact(ArtifactKind.MEDIA, target), consistent

    async def snapshot(self, tier: BackupTier) -> BackupManifest:
        created_at = self._clock()
        backup_id = self._new_backup_id(tier, created_at)
        directory = self.backup_dir(backup_id)
        directory.mkdir(parents=True, exist_ok=False)
        logger.info("Starting %s backup %s", tier.value, backup_id)

        warnings: list[str] = []
        artifacts: list[BackupArtifact] = []
        consistent = False

        dump = await self._dump_database(directory, warnings)
        if dump:
            artifacts.append(dump)
        config_archive = await self._archive_config(directory, warnings)
        if config_archive:
            artifacts.append(config_archive)
        if tier is BackupTier.FULL:
            media, consistent = await self._archive_media(directory, warnings)
            if media:
                artifacts.append(media)

        manifest = BackupManifest(
            backup_id=backup_id,
            stack=self._config.stack.name,
            created_at=created_at,
            tier=tier,
            artifacts=artifacts,
            size_bytes=sum(a.size_bytes for a in artifacts),
            consistent=consistent,
            warnings=warnings,
        )
        (directory / MANIFEST_FILENAME).write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
        if self._catalog is not None:
            await self._catalog.record(manifest, str(directory))

        if manifest.complete:
            logger.info("Backup %s complete - %d bytes", backup_id, manifest.size_bytes)
        else:
            logger.warning("Backup %s incomplete: %s", backup_id, "; ".join(warnings))
        return manifest

    def load_manifest(self, backup_id: str) -> BackupManifest:
        path = self.backup_dir(backup_id) / MANIFEST_FILENAME
        if not path.exists():
            raise RestoreError(f"No manifest for backup {backup_id!r} in {self.backup_root}")
        try:
            return BackupManifest.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise RestoreError(f"Unreadable manifest {path}: {exc}") from exc

    # ─── restore ───

    async def _run_step(
        self,
        result: OperationResult,
        name: str,
        action: Callable[[], Awaitable[dict[str, Any] | None]],
    ) -> None:
        """Run one restore step; any failure aborts the restore."""
        start = time.monotonic()
        try:
            data = await action()
        except Exception as exc:
            result.steps.append(StepResult(
                name=name,
                success=False,
                error=str(exc),
                duration_ms=round((time.monotonic() - start) * 1000, 1),
            ))
            logger.error("Restore step %s failed: %s", name, exc)
            if isinstance(exc, RestoreError):
                raise
            raise RestoreError(f"{name}: {exc}") from exc
        result.steps.append(StepResult(
            name=name,
            success=True,
            data=data or {},
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        ))

    def _verify(self, manifest: BackupManifest, directory: Path) -> dict[str, Any]:
        for artifact in manifest.artifacts:
            path = directory / artifact.filename
            if not path.exists():
                raise RestoreError(f"missing artifact {artifact.filename}")
            if artifact.sha256 and archive.sha256_file(path) != artifact.sha256:
                raise RestoreError(f"checksum mismatch for {artifact.filename}")
        return {"artifacts": [a.kind.value for a in manifest.artifacts]}

    async def _wait_for_database(self) -> dict[str, Any]:
        db = self._config.database
        budget = self._config.backup.db_ready_budget
        last_error = ""
        for attempt in range(1, budget + 1):
            result = await self._compose.exec(
                db.service, ["pg_isready", "-U", db.user, "-d", db.name], timeout=10.0
            )
            if result.ok:
                return {"attempts": attempt}
            last_error = result.error_text
            if attempt < budget:
                await self._sleep(self._config.readiness.poll_interval)
        raise RestoreError(f"database did not accept connections after {budget} attempts ({last_error})")

    async def _psql(self, database: str, sql: str) -> None:
        db = self._config.database
        result = await self._compose.exec(
            db.service,
            ["psql", "-U", db.user, "-d", database, "-v", "ON_ERROR_STOP=1", "-c", sql],
            timeout=120.0,
        )
        if not result.ok:
            raise RestoreError(result.error_text)

    async def _recreate_database(self) -> dict[str, Any]:
        db = self._config.database
        await self._psql("postgres", f'DROP DATABASE IF EXISTS "{db.name}";')
        await self._psql("postgres", f'CREATE DATABASE "{db.name}" OWNER "{db.user}";')
        return {"database": db.name}

    async def _replay_dump(self, dump_path: Path) -> dict[str, Any]:
        db = self._config.database
        result = await self._compose.exec(
            db.service,
            ["psql", "-U", db.user, "-d", db.name, "-q"],
            stdin_path=dump_path,
            timeout=db.dump_timeout,
        )
        if not result.ok:
            raise RestoreError(f"replay failed: {result.error_text}")
        return {"bytes": dump_path.stat().st_size}

    async def _checked(self, action: Awaitable[Any], what: str) -> dict[str, Any]:
        result = await action
        if not result.ok:
            raise RestoreError(f"{what}: {result.error_text}")
        return {}

    async def restore(self, manifest: BackupManifest) -> OperationResult:
        """Restore *manifest*; raises ``RestoreError`` when a step cannot complete.

        Services are left stopped after a failed step so the operator can
        inspect a half-restored system before anything writes to it.
        """
        directory = self.backup_dir(manifest.backup_id)
        if not directory.is_dir():
            raise RestoreError(f"Backup directory {directory} does not exist")

        db = self._config.database
        result = OperationResult(operation="restore")
        logger.info("Restoring backup %s (%s)", manifest.backup_id, ", ".join(k.value for k in manifest.kinds))

        async def verify() -> dict[str, Any]:
            return await asyncio.to_thread(self._verify, manifest, directory)

        await self._run_step(result, "verify", verify)
        await self._run_step(result, "stop_all", lambda: self._checked(self._compose.stop(), "stop"))

        config_artifact = manifest.artifact(ArtifactKind.CONFIG)
        if config_artifact:
            path = directory / config_artifact.filename

            async def restore_config() -> dict[str, Any]:
                await asyncio.to_thread(archive.extract_archive, path, self.project_dir)
                return {"destination": str(self.project_dir)}

            await self._run_step(result, "restore_config", restore_config)

        media_artifact = manifest.artifact(ArtifactKind.MEDIA)
        if media_artifact:
            path = directory / media_artifact.filename

            async def restore_media() -> dict[str, Any]:
                await asyncio.to_thread(archive.replace_directory, path, self.media_dir)
                return {"destination": str(self.media_dir)}

            await self._run_step(result, "restore_media", restore_media)

        db_artifact = manifest.artifact(ArtifactKind.DATABASE)
        if db_artifact:
            dump_path = directory / db_artifact.filename
            await self._run_step(result, "start_database", lambda: self._checked(self._compose.up([db.service]), "start database"))
            await self._run_step(result, "wait_database", self._wait_for_database)
            await self._run_step(result, "recreate_database", self._recreate_database)
            await self._run_step(result, "replay_dump", lambda: self._replay_dump(dump_path))
        else:
            result.steps.append(StepResult(
                name="restore_database",
                success=True,
                skipped=True,
                data={"message": "backup has no database dump"},
            ))

        up = await self._compose.up()
        result.steps.append(StepResult(
            name="start_all",
            success=up.ok,
            error=None if up.ok else up.error_text,
            duration_ms=up.duration_ms,
        ))

        readiness = self._config.readiness
        result.readiness = await self._orchestrator.await_ready(
            self._config.descriptors,
            readiness.running_budget,
            readiness.healthy_budget,
            readiness.functional_budget,
        )
        logger.info("Restore of %s finished: %s", manifest.backup_id, result.readiness.outcome.value)
        return result

    # ─── retention ───

    async def prune(self, keep_last: int | None = None, max_age_days: int | None = None) -> list[str]:
        """Delete catalogued backups beyond the newest *keep_last* or older than *max_age_days*."""
        if self._catalog is None:
            return []
        keep = self._config.backup.keep_last if keep_last is None else keep_last
        max_age = self._config.backup.max_age_days if max_age_days is None else max_age_days
        if keep <= 0 and max_age <= 0:
            return []

        entries = await self._catalog.list_recent(limit=1_000_000)
        cutoff = self._clock() - timedelta(days=max_age) if max_age > 0 else None
        removed: list[str] = []
        for index, entry in enumerate(entries):
            too_many = keep > 0 and index >= keep
            too_old = cutoff is not None and entry.manifest.created_at < cutoff
            if not (too_many or too_old):
                continue
            await asyncio.to_thread(shutil.rmtree, entry.directory, True)
            await self._catalog.remove(entry.manifest.backup_id)
            removed.append(entry.manifest.backup_id)
            logger.info("Pruned backup %s", entry.manifest.backup_id)
        return removed
