"""deploydag - promote releases through a DAG of deployment environments.

Stages run wave by wave against registered environments, every command
attempt lands in an append-only audit log, and any environment can be rolled
back to its last known-good deploy.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("deploydag")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from deploydag.core.audit import AuditLog
from deploydag.core.config import ConfigLoader, DeployDAGConfig, load_config
from deploydag.core.domain import (
    Environment,
    Outcome,
    Run,
    RunStatus,
    StageAttempt,
    StageGraph,
    StageSpec,
    StageStatus,
)
from deploydag.core.engine import PipelineEngine
from deploydag.core.engine_factory import EngineFactory
from deploydag.core.executor import CommandExecutor
from deploydag.core.registry import EnvironmentRegistry
from deploydag.core.rollback import RollbackCoordinator
from deploydag.core.triggers import TriggerEvent

__all__ = [
    "__version__",
    "AuditLog",
    "CommandExecutor",
    "ConfigLoader",
    "DeployDAGConfig",
    "EngineFactory",
    "Environment",
    "EnvironmentRegistry",
    "Outcome",
    "PipelineEngine",
    "RollbackCoordinator",
    "Run",
    "RunStatus",
    "StageAttempt",
    "StageGraph",
    "StageSpec",
    "StageStatus",
    "TriggerEvent",
    "load_config",
]
