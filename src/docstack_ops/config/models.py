"""Pydantic models for docstack configuration."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ServiceRole(str, Enum):
    """Whether a service owns durable data."""

    STATEFUL = "stateful"
    STATELESS = "stateless"


class CommandProbeDef(BaseModel):
    """Run a command inside the service; exit code 0 means healthy."""

    model_config = ConfigDict(frozen=True)

    type: Literal["command"] = "command"
    command: tuple[str, ...]
    expect: str = ""  # substring required in stdout, empty = exit code only
    timeout: float = 5.0


class HttpProbeDef(BaseModel):
    """GET a URL from the host."""

    model_config = ConfigDict(frozen=True)

    type: Literal["http"] = "http"
    url: str
    expected_status: int = 200
    expect: str = ""
    timeout: float = 5.0


class ContainerProbeDef(BaseModel):
    """Trust the runtime's own healthcheck status for the container."""

    model_config = ConfigDict(frozen=True)

    type: Literal["container"] = "container"


ProbeDef = Annotated[
    Union[CommandProbeDef, HttpProbeDef, ContainerProbeDef],
    Field(discriminator="type"),
]


class ServiceDescriptor(BaseModel):
    """Static description of one compose service."""

    model_config = ConfigDict(frozen=True)

    name: str
    role: ServiceRole = ServiceRole.STATELESS
    probe: ProbeDef | None = None
    description: str = ""

    @property
    def has_probe(self) -> bool:
        return self.probe is not None


class StackConfig(BaseModel):
    """Where the compose project lives and how to drive it."""

    name: str = "paperless"
    project_dir: str = "."
    compose_file: str = "docker-compose.yml"
    compose_command: list[str] = Field(default_factory=lambda: ["docker", "compose"])


class DatabaseConfig(BaseModel):
    """PostgreSQL service used for dumps and restores."""

    service: str = "db"
    name: str = "paperless"
    user: str = "paperless"
    dump_timeout: float = 1800.0


class ReadinessConfig(BaseModel):
    """Attempt budgets for the three readiness phases."""

    running_budget: int = Field(default=60, ge=1)
    healthy_budget: int = Field(default=120, ge=1)
    functional_budget: int = Field(default=30, ge=1)
    poll_interval: float = Field(default=1.0, ge=0)
    query_timeout: float = 10.0
    functional_check: list[str] = Field(default_factory=list)
    functional_timeout: float = 30.0


class MonitorConfig(BaseModel):
    """Cron-driven health monitor settings."""

    failure_threshold: int = Field(default=3, ge=1)
    state_dir: str = "/var/lib/docstack"


class EmailConfig(BaseModel):
    """Email alert sink."""

    enabled: bool = False
    recipients: list[str] = Field(default_factory=list)
    sender: str = "docstack@localhost"
    api_url: str = ""  # HTTP mail API, tried before local mailers
    api_key_env: str = ""
    timeout: float = 30.0


class WebhookConfig(BaseModel):
    """Configuration for a single webhook endpoint."""

    url: str
    name: str = ""
    secret: str = ""  # HMAC signing key, supports ${ENV_VAR}
    timeout: float = 10.0


class AlertingConfig(BaseModel):
    """Alert fan-out and audit log."""

    enabled: bool = True
    host_name: str = ""  # empty = socket.gethostname()
    audit_log: str = "/var/log/docstack/alerts.jsonl"
    email: EmailConfig = Field(default_factory=EmailConfig)
    webhooks: list[WebhookConfig] = Field(default_factory=list)


class BackupConfig(BaseModel):
    """Backup destination, contents and retention."""

    directory: str = "/var/backups/docstack"
    media_dir: str = "./media"
    config_files: list[str] = Field(default_factory=lambda: [".env", "docker-compose.yml"])
    catalog_db: str = "backups.db"  # relative paths resolve inside directory
    db_ready_budget: int = Field(default=30, ge=1)
    keep_last: int = 7  # 0 = unlimited
    max_age_days: int = 0  # 0 = unlimited


class ApiConfig(BaseModel):
    """Status API settings."""

    api_key: str = ""  # empty = auth disabled


class DocstackConfig(BaseModel):
    """Root configuration model for .docstack.yaml."""

    stack: StackConfig = Field(default_factory=StackConfig)
    services: dict[str, ServiceDescriptor] = Field(default_factory=dict)
    primary_service: str = ""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    alerting: AlertingConfig = Field(default_factory=AlertingConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @model_validator(mode="before")
    @classmethod
    def _fill_service_names(cls, data: object) -> object:
        # services are keyed by name in YAML; the key wins when name is omitted
        if isinstance(data, dict) and isinstance(data.get("services"), dict):
            services = {}
            for key, value in data["services"].items():
                if value is None:
                    value = {}
                if isinstance(value, dict):
                    value = {"name": key, **value}
                services[key] = value
            data = {**data, "services": services}
        return data

    @property
    def descriptors(self) -> list[ServiceDescriptor]:
        return list(self.services.values())
