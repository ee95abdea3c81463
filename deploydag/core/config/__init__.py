"""Configuration loading and models."""

from deploydag.core.config.loader import ConfigLoader, load_config
from deploydag.core.config.models import (
    DeployDAGConfig,
    DeployerSettings,
    EnvironmentConfig,
    LoggingSettings,
    RetrySettings,
    Settings,
    StageConfig,
)

__all__ = [
    "ConfigLoader",
    "load_config",
    "DeployDAGConfig",
    "DeployerSettings",
    "EnvironmentConfig",
    "LoggingSettings",
    "RetrySettings",
    "Settings",
    "StageConfig",
]
