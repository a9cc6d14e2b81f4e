"""docstack configuration system."""

from docstack_ops.config.loader import find_config_file, load_config
from docstack_ops.config.models import (
    AlertingConfig,
    BackupConfig,
    DocstackConfig,
    ReadinessConfig,
    ServiceDescriptor,
    ServiceRole,
    WebhookConfig,
)

__all__ = [
    "AlertingConfig",
    "BackupConfig",
    "DocstackConfig",
    "ReadinessConfig",
    "ServiceDescriptor",
    "ServiceRole",
    "WebhookConfig",
    "load_config",
    "find_config_file",
]
