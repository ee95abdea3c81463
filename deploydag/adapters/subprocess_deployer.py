"""Deployer adapter that shells out to the platform CLI.

Each action maps to an argv template. Placeholders are substituted per
argument, never through a shell::

    deployer = SubprocessDeployer({
        "deploy": ["sf", "project", "deploy", "start", "--target-org", "{credential_ref}",
                   "--source-dir", "{artifact}", "--test-level", "{test_level}", "--json"],
    })
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping

from deploydag.core.domain.environment import TestLevel
from deploydag.core.domain.run import StageAction
from deploydag.core.exceptions import ConfigurationError
from deploydag.core.logging import get_logger
from deploydag.core.ports.deployer import DeployCommand, DeployerOutput

logger = get_logger(__name__)

PLACEHOLDERS = frozenset({"credential_ref", "artifact", "test_level", "revision", "environment"})

# Platform names for each test level
DEFAULT_TEST_LEVEL_NAMES: dict[TestLevel, str] = {
    TestLevel.NONE: "NoTestRun",
    TestLevel.LOCAL: "RunLocalTests",
    TestLevel.FULL: "RunAllTestsInOrg",
}

DEFAULT_COMMANDS: dict[StageAction, list[str]] = {
    StageAction.DEPLOY: [
        "sf", "project", "deploy", "start",
        "--target-org", "{credential_ref}",
        "--source-dir", "{artifact}",
        "--test-level", "{test_level}",
        "--wait", "60",
        "--json",
    ],
    StageAction.VALIDATE: [
        "sf", "project", "deploy", "validate",
        "--target-org", "{credential_ref}",
        "--source-dir", "{artifact}",
        "--test-level", "{test_level}",
        "--wait", "60",
        "--json",
    ],
}  # fmt: skip

_KILL_GRACE_SECONDS = 5.0


class SubprocessDeployer:
    """Runs deploy commands as child processes."""

    def __init__(
        self,
        commands: Mapping[StageAction | str, list[str]] | None = None,
        test_level_names: Mapping[TestLevel | str, str] | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        self.commands: dict[StageAction, list[str]] = dict(DEFAULT_COMMANDS)
        for action, template in (commands or {}).items():
            self.commands[StageAction(action)] = list(template)
        self.test_level_names: dict[TestLevel, str] = dict(DEFAULT_TEST_LEVEL_NAMES)
        for level, name in (test_level_names or {}).items():
            self.test_level_names[TestLevel(level)] = name
        self.env = dict(env) if env is not None else None
        self.cwd = cwd
        self._validate_templates()

    def _validate_templates(self) -> None:
        for action, template in self.commands.items():
            if not template:
                raise ConfigurationError(f"deployer.commands.{action.value}", "empty command")
            for arg in template:
                try:
                    arg.format_map(dict.fromkeys(PLACEHOLDERS, ""))
                except (AttributeError, KeyError, IndexError, ValueError) as e:
                    raise ConfigurationError(
                        f"deployer.commands.{action.value}",
                        f"bad placeholder in {arg!r}: {e}. Allowed: {sorted(PLACEHOLDERS)}",
                    ) from e

    def render(self, command: DeployCommand) -> list[str]:
        values = {
            "credential_ref": command.credential_ref,
            "artifact": command.artifact_path,
            "test_level": self.test_level_names[command.test_level],
            "revision": command.revision or "",
            "environment": command.environment_id,
        }
        return [arg.format_map(values) for arg in self.commands[command.action]]

    async def invoke(self, command: DeployCommand) -> DeployerOutput:
        argv = self.render(command)
        logger.info("Running {cmd}", cmd=" ".join(argv[:4]))
        env = {**os.environ, **self.env} if self.env is not None else None
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=self.cwd,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        return DeployerOutput(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            argv=argv,
        )

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        process.kill()
        try:
            await asyncio.wait_for(process.wait(), _KILL_GRACE_SECONDS)
        except TimeoutError:
            logger.error("Process {pid} did not exit after kill", pid=process.pid)
