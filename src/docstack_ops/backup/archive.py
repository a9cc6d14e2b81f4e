"""Tar archives and checksums for backup artifacts."""

from __future__ import annotations

import hashlib
import shutil
import tarfile
from pathlib import Path
from typing import Sequence

_CHUNK = 1024 * 1024


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def is_non_empty_dir(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())


def archive_files(target: Path, base_dir: Path, names: Sequence[str]) -> list[str]:
    """Write a gzip tar of the *names* that exist under *base_dir*; return what was included."""
    included: list[str] = []
    with tarfile.open(target, "w:gz") as tar:
        for name in names:
            source = base_dir / name
            if source.exists():
                tar.add(source, arcname=name)
                included.append(name)
    return included


def archive_directory(target: Path, source: Path) -> None:
    """Write a gzip tar of *source*, stored under its own directory name."""
    with tarfile.open(target, "w:gz") as tar:
        tar.add(source, arcname=source.name)


def extract_archive(archive: Path, destination: Path) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(destination, filter="data")


def replace_directory(archive: Path, target: Path) -> None:
    """Swap *target* for the copy in *archive* (stored under ``target.name``).

    The current tree is moved aside first and only deleted once extraction
    succeeds; on failure it is put back.
    """
    aside = target.with_name(f".{target.name}.pre-restore")
    if aside.exists():
        shutil.rmtree(aside)
    if target.exists():
        target.rename(aside)
    try:
        extract_archive(archive, target.parent)
    except Exception:
        if target.exists():
            shutil.rmtree(target)
        if aside.exists():
            aside.rename(target)
        raise
    if aside.exists():
        shutil.rmtree(aside)
