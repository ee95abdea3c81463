"""Mock deployer for tests and dry runs."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from deploydag.core.ports.deployer import DeployCommand, DeployerOutput


@dataclass(frozen=True, slots=True)
class MockResponse:
    """One scripted reply from the mock deploy boundary."""

    exit_code: int = 0
    stdout: str = '{"status": 0, "result": {"details": []}}'
    stderr: str = ""
    delay_seconds: float = 0.0
    error: Exception | None = None

    @classmethod
    def success(cls, **result: Any) -> MockResponse:
        return cls(0, json.dumps({"status": 0, "result": {"details": [], **result}}))

    @classmethod
    def failure(cls, *details: Any, status: int = 1) -> MockResponse:
        return cls(status, json.dumps({"status": status, "result": {"details": list(details)}}))

    @classmethod
    def malformed(cls, stdout: str = "Error: unexpected EOF", exit_code: int = 1) -> MockResponse:
        return cls(exit_code, stdout)

    @classmethod
    def hang(cls, seconds: float = 3600.0) -> MockResponse:
        return cls(delay_seconds=seconds)

    @classmethod
    def unreachable(cls, message: str = "connection refused") -> MockResponse:
        return cls(error=ConnectionError(message))


class MockDeployer:
    """Scripted implementation of the deployer port.

    Replies are looked up by environment id (falling back to ``"*"``) and
    consumed in order; the last reply repeats once the script runs out.

    Examples
    --------
    Example usage::

        deployer = MockDeployer({"prod": [MockResponse.hang()], "*": [MockResponse.success()]})
    """

    def __init__(self, responses: dict[str, list[MockResponse]] | None = None) -> None:
        self.responses = responses if responses is not None else {"*": [MockResponse.success()]}
        self.calls: list[DeployCommand] = []
        self.cancelled: list[DeployCommand] = []
        self._positions: dict[str, int] = {}

    def render(self, command: DeployCommand) -> list[str]:
        argv = [
            "mock-deploy",
            command.action.value,
            "--target",
            command.credential_ref,
            "--source",
            command.artifact_path,
            "--tests",
            command.test_level.value,
        ]
        if command.revision:
            argv += ["--revision", command.revision]
        return argv

    def _next_response(self, environment_id: str) -> MockResponse:
        key = environment_id if environment_id in self.responses else "*"
        script = self.responses.get(key) or [MockResponse.success()]
        position = self._positions.get(key, 0)
        self._positions[key] = position + 1
        return script[min(position, len(script) - 1)]

    async def invoke(self, command: DeployCommand) -> DeployerOutput:
        self.calls.append(command)
        response = self._next_response(command.environment_id)
        if response.delay_seconds > 0:
            try:
                await asyncio.sleep(response.delay_seconds)
            except asyncio.CancelledError:
                self.cancelled.append(command)
                raise
        if response.error is not None:
            raise response.error
        return DeployerOutput(
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
            argv=self.render(command),
        )

    # Testing utilities (not part of the deployer port)
    def calls_for(self, environment_id: str) -> list[DeployCommand]:
        return [c for c in self.calls if c.environment_id == environment_id]

    def reset(self) -> None:
        self.calls.clear()
        self.cancelled.clear()
        self._positions.clear()
