"""Tiered backups, restore and the backup catalog."""

from __future__ import annotations

from docstack_ops.backup.catalog import BackupCatalog, CatalogEntry, InMemoryCatalog, SqliteCatalog
from docstack_ops.backup.controller import ConsistencyController, RestoreError
from docstack_ops.backup.models import ArtifactKind, BackupArtifact, BackupManifest, BackupTier

__all__ = [
    "ArtifactKind",
    "BackupArtifact",
    "BackupCatalog",
    "BackupManifest",
    "BackupTier",
    "CatalogEntry",
    "ConsistencyController",
    "InMemoryCatalog",
    "RestoreError",
    "SqliteCatalog",
]
