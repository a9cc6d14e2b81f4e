"""Load ``.docstack.yaml``: locate it, expand ``${VAR}`` references, validate."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from docstack_ops.config.models import DocstackConfig

CONFIG_FILENAME = ".docstack.yaml"
CONFIG_ENV_VAR = "DOCSTACK_CONFIG"

# ${NAME} or ${NAME:-fallback}
_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def _lookup(match: re.Match[str]) -> str:
    name, has_fallback, fallback = match.group(1).partition(":-")
    value = os.environ.get(name.strip())
    if value is not None:
        return value
    return fallback if has_fallback else match.group(0)


def expand_env(text: str) -> str:
    """Substitute environment references in *text*. Unset names without a fallback stay literal."""
    return _REFERENCE.sub(_lookup, text)


def expand_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: expand_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return list(map(expand_tree, node))
    return expand_env(node) if isinstance(node, str) else node


def find_config_file(start: Path | None = None) -> Path | None:
    """Return the config path to use, or None.

    ``$DOCSTACK_CONFIG`` wins when no explicit *start* is given; otherwise the
    nearest ``.docstack.yaml`` in *start* (default: cwd) or one of its parents.
    """
    if start is None and os.environ.get(CONFIG_ENV_VAR):
        return Path(os.environ[CONFIG_ENV_VAR])
    directory = (start or Path.cwd()).resolve()
    while True:
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if directory.parent == directory:
            return None
        directory = directory.parent


def load_config(path: Path | None = None) -> DocstackConfig:
    """Read, expand and validate the config at *path* (or the one ``find_config_file`` picks).

    A relative ``stack.project_dir`` is resolved against the directory holding
    the config file, so cron jobs behave the same as an interactive shell.
    """
    config_path = path or find_config_file()
    if not config_path or not config_path.exists():
        raise FileNotFoundError(
            f"Could not find {CONFIG_FILENAME}. Create one from .docstack.yaml.example or specify a path."
        )
    with config_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    data = expand_tree(raw)
    try:
        config = DocstackConfig(**data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}: {exc}") from exc

    project_dir = Path(config.stack.project_dir)
    if not project_dir.is_absolute():
        config.stack.project_dir = str((config_path.parent / project_dir).resolve())
    return config
