"""Domain models: environments, the stage graph and pipeline runs."""

from deploydag.core.domain.dag import (
    CycleDetectedError,
    DuplicateStageError,
    MissingDependencyError,
    StageGraph,
    StageGraphError,
    StageSpec,
)
from deploydag.core.domain.environment import Environment, TestLevel, Tier
from deploydag.core.domain.run import (
    AttemptKind,
    Outcome,
    Run,
    RunRecord,
    RunStatus,
    StageAction,
    StageAttempt,
    StageStatus,
)

__all__ = [
    "AttemptKind",
    "CycleDetectedError",
    "DuplicateStageError",
    "Environment",
    "MissingDependencyError",
    "Outcome",
    "Run",
    "RunRecord",
    "RunStatus",
    "StageAction",
    "StageAttempt",
    "StageGraph",
    "StageGraphError",
    "StageSpec",
    "StageStatus",
    "TestLevel",
    "Tier",
]
