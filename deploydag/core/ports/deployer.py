"""Port interface for the external deploy command boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from deploydag.core.domain.environment import TestLevel
from deploydag.core.domain.run import StageAction


@dataclass(frozen=True, slots=True)
class DeployCommand:
    """Everything one invocation of the platform CLI needs.

    Credentials travel with the command; there is no ambient session.
    """

    environment_id: str
    credential_ref: str
    artifact_path: str
    test_level: TestLevel
    action: StageAction = StageAction.DEPLOY
    revision: str | None = None


@dataclass(frozen=True, slots=True)
class DeployerOutput:
    """Raw result of one invocation, before classification."""

    exit_code: int
    stdout: str
    stderr: str = ""
    argv: list[str] = field(default_factory=list)


@runtime_checkable
class DeployerPort(Protocol):
    """Runs a deploy command against the platform.

    Implementations must stop the underlying process when the awaiting task
    is cancelled.
    """

    async def invoke(self, command: DeployCommand) -> DeployerOutput:
        """Run the command and return its raw output."""
        ...

    def render(self, command: DeployCommand) -> list[str]:
        """Return the argv that ``invoke`` would run, for the audit trail."""
        ...
