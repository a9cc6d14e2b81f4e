"""Backup catalog protocol with in-memory and SQLite backends."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosqlite

from docstack_ops.backup.models import ArtifactKind, BackupArtifact, BackupManifest, BackupTier


@dataclass
class CatalogEntry:
    """A manifest and the directory holding its artifacts."""

    manifest: BackupManifest
    directory: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_id": self.manifest.backup_id,
            "created_at": self.manifest.created_at.isoformat(),
            "tier": self.manifest.tier.value,
            "size_bytes": self.manifest.size_bytes,
            "consistent": self.manifest.consistent,
            "complete": self.manifest.complete,
            "artifacts": [a.kind.value for a in self.manifest.artifacts],
            "warnings": list(self.manifest.warnings),
            "directory": self.directory,
        }


@runtime_checkable
class BackupCatalog(Protocol):
    """Protocol for backup catalog backends."""

    async def record(self, manifest: BackupManifest, directory: str) -> None: ...
    async def get(self, backup_id: str) -> CatalogEntry | None: ...
    async def list_recent(self, limit: int = 20) -> list[CatalogEntry]: ...
    async def remove(self, backup_id: str) -> bool: ...


class InMemoryCatalog:
    """In-memory catalog. Safe under concurrent tasks via asyncio lock."""

    def __init__(self) -> None:
        self._entries: dict[str, CatalogEntry] = {}
        self._lock = asyncio.Lock()

    async def record(self, manifest: BackupManifest, directory: str) -> None:
        async with self._lock:
            self._entries[manifest.backup_id] = CatalogEntry(manifest=manifest, directory=directory)

    async def get(self, backup_id: str) -> CatalogEntry | None:
        async with self._lock:
            return self._entries.get(backup_id)

    async def list_recent(self, limit: int = 20) -> list[CatalogEntry]:
        """Newest first."""
        async with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.manifest.created_at, reverse=True)
            return entries[:limit]

    async def remove(self, backup_id: str) -> bool:
        async with self._lock:
            return self._entries.pop(backup_id, None) is not None


_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS backups (
    backup_id TEXT PRIMARY KEY,
    stack TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    tier TEXT NOT NULL,
    directory TEXT NOT NULL,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    consistent INTEGER NOT NULL DEFAULT 0,
    warnings TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS artifacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    backup_id TEXT NOT NULL REFERENCES backups(backup_id) ON DELETE CASCADE,
    kind TEXT NOT NULL,
    filename TEXT NOT NULL,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    sha256 TEXT NOT NULL DEFAULT ''
);
"""

_SELECT_BACKUPS = (
    "SELECT backup_id, stack, created_at, tier, directory, size_bytes, consistent, warnings FROM backups"
)


class SqliteCatalog:
    """SQLite-backed backup catalog."""

    def __init__(self, db_path: str = "backups.db") -> None:
        self._db_path = db_path
        self._initialized = False

    def _connect(self) -> aiosqlite.Connection:
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        return aiosqlite.connect(self._db_path)

    async def _init_connection(self, db: aiosqlite.Connection) -> None:
        """Enable foreign keys (must run per-connection) and create tables on first use."""
        await db.execute("PRAGMA foreign_keys = ON")
        if not self._initialized:
            await db.executescript(_CREATE_TABLES)
            self._initialized = True

    async def record(self, manifest: BackupManifest, directory: str) -> None:
        async with self._connect() as db:
            await self._init_connection(db)
            await db.execute("DELETE FROM backups WHERE backup_id = ?", (manifest.backup_id,))
            await db.execute(
                "INSERT INTO backups (backup_id, stack, created_at, tier, directory, size_bytes, consistent, warnings)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    manifest.backup_id,
                    manifest.stack,
                    manifest.created_at.isoformat(),
                    manifest.tier.value,
                    directory,
                    manifest.size_bytes,
                    int(manifest.consistent),
                    json.dumps(manifest.warnings),
                ),
            )
            for artifact in manifest.artifacts:
                await db.execute(
                    "INSERT INTO artifacts (backup_id, kind, filename, size_bytes, sha256) VALUES (?, ?, ?, ?, ?)",
                    (
                        manifest.backup_id,
                        artifact.kind.value,
                        artifact.filename,
                        artifact.size_bytes,
                        artifact.sha256,
                    ),
                )
            await db.commit()

    async def _load_artifacts(self, db: aiosqlite.Connection, backup_id: str) -> list[BackupArtifact]:
        rows = list(await db.execute_fetchall(
            "SELECT kind, filename, size_bytes, sha256 FROM artifacts WHERE backup_id = ? ORDER BY id",
            (backup_id,),
        ))
        return [
            BackupArtifact(kind=ArtifactKind(str(r[0])), filename=str(r[1]), size_bytes=int(r[2]), sha256=str(r[3]))
            for r in rows
        ]

    def _parse_dt(self, val: str) -> datetime:
        parsed = datetime.fromisoformat(val)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    async def _rows_to_entries(self, db: aiosqlite.Connection, rows: list[Any]) -> list[CatalogEntry]:
        entries: list[CatalogEntry] = []
        for r in rows:
            backup_id = str(r[0])
            manifest = BackupManifest(
                backup_id=backup_id,
                stack=str(r[1]),
                created_at=self._parse_dt(str(r[2])),
                tier=BackupTier(str(r[3])),
                size_bytes=int(r[5]),
                consistent=bool(r[6]),
                warnings=list(json.loads(r[7] or "[]")),
                artifacts=await self._load_artifacts(db, backup_id),
            )
            entries.append(CatalogEntry(manifest=manifest, directory=str(r[4])))
        return entries

    async def get(self, backup_id: str) -> CatalogEntry | None:
        async with self._connect() as db:
            await self._init_connection(db)
            rows = list(await db.execute_fetchall(f"{_SELECT_BACKUPS} WHERE backup_id = ?", (backup_id,)))
            entries = await self._rows_to_entries(db, rows)
            return entries[0] if entries else None

    async def list_recent(self, limit: int = 20) -> list[CatalogEntry]:
        """Newest first."""
        async with self._connect() as db:
            await self._init_connection(db)
            rows = list(await db.execute_fetchall(
                f"{_SELECT_BACKUPS} ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ))
            return await self._rows_to_entries(db, rows)

    async def remove(self, backup_id: str) -> bool:
        async with self._connect() as db:
            await self._init_connection(db)
            cursor = await db.execute("DELETE FROM backups WHERE backup_id = ?", (backup_id,))
            await db.commit()
            return (cursor.rowcount or 0) > 0
