"""Shared fixtures for docstack tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from docstack_ops.config.models import DocstackConfig
from fakes import FakeCompose, SleepRecorder

SAMPLE_CONFIG: dict[str, Any] = {
    "stack": {"name": "paperless", "project_dir": "."},
    "primary_service": "webserver",
    "services": {
        "webserver": {
            "role": "stateless",
            "probe": {"type": "command", "command": ["curl", "-fs", "http://localhost:8000"]},
        },
        "db": {
            "role": "stateful",
            "probe": {"type": "command", "command": ["pg_isready"], "expect": "accepting connections"},
        },
        "broker": {
            "role": "stateful",
            "probe": {"type": "container"},
        },
        "tika": {},
    },
    "database": {"service": "db", "name": "paperless", "user": "paperless"},
    "readiness": {
        "running_budget": 5,
        "healthy_budget": 5,
        "functional_budget": 3,
        "poll_interval": 1.0,
        "functional_check": ["python3", "manage.py", "check"],
    },
    "monitor": {"failure_threshold": 3},
    "alerting": {"enabled": True},
    "backup": {"db_ready_budget": 3, "keep_last": 0},
}


@pytest.fixture()
def sample_config_dict() -> dict[str, Any]:
    """Return raw sample config dict."""
    return dict(SAMPLE_CONFIG)


@pytest.fixture()
def sample_config(tmp_path: Path) -> DocstackConfig:
    """Parsed sample config with every writable path under tmp_path."""
    project = tmp_path / "project"
    project.mkdir()
    data = {
        **SAMPLE_CONFIG,
        "stack": {"name": "paperless", "project_dir": str(project)},
        "monitor": {"failure_threshold": 3, "state_dir": str(tmp_path / "state")},
        "alerting": {"enabled": True, "audit_log": str(tmp_path / "alerts.jsonl")},
        "backup": {
            "directory": str(tmp_path / "backups"),
            "media_dir": "media",
            "config_files": [".env", "docker-compose.yml"],
            "db_ready_budget": 3,
            "keep_last": 0,
        },
    }
    return DocstackConfig(**data)


@pytest.fixture()
def fake_compose(sample_config: DocstackConfig) -> FakeCompose:
    return FakeCompose(Path(sample_config.stack.project_dir))


@pytest.fixture()
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    """Write sample config to a temp .docstack.yaml and return the path."""
    path = tmp_path / ".docstack.yaml"
    with path.open("w") as fh:
        yaml.dump(SAMPLE_CONFIG, fh)
    return path
