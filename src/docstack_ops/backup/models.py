"""Backup manifest models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

MANIFEST_FILENAME = "manifest.json"


class BackupTier(str, Enum):
    QUICK = "quick"  # database + config, services stay up
    FULL = "full"  # plus media, primary service stopped while archiving


class ArtifactKind(str, Enum):
    DATABASE = "database"
    CONFIG = "config"
    MEDIA = "media"


class BackupArtifact(BaseModel):
    """One file inside a backup directory."""

    kind: ArtifactKind
    filename: str
    size_bytes: int = 0
    sha256: str = ""


class BackupManifest(BaseModel):
    """Describes exactly what one backup contains. Never rewritten once saved."""

    backup_id: str
    stack: str = ""
    created_at: datetime
    tier: BackupTier
    artifacts: list[BackupArtifact] = Field(default_factory=list)
    size_bytes: int = 0
    consistent: bool = False  # services were stopped while files were captured
    warnings: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings

    @property
    def kinds(self) -> list[ArtifactKind]:
        return [a.kind for a in self.artifacts]

    def artifact(self, kind: ArtifactKind) -> BackupArtifact | None:
        for artifact in self.artifacts:
            if artifact.kind is kind:
                return artifact
        return None

    def has(self, kind: ArtifactKind) -> bool:
        return self.artifact(kind) is not None
