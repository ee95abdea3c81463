"""Command executor: one deploy command invocation with timeout and classification.

The executor is the only place where the engine suspends. It runs a single
:class:`DeployCommand` through a :class:`DeployerPort`, enforces a hard
wall-clock timeout, honours a run-level cancel signal and classifies the
result as success, application failure, infrastructure failure or timeout.
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from deploydag.core.domain.environment import Environment
from deploydag.core.domain.run import Outcome
from deploydag.core.logging import get_logger
from deploydag.core.ports.deployer import DeployCommand, DeployerPort

logger = get_logger(__name__)

_MAX_DETAILS_IN_SUMMARY = 3


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Classified result of one deploy command invocation."""

    outcome: Outcome
    exit_code: int | None
    structured_output: dict[str, Any] | None
    duration_ms: float
    error: str | None = None
    argv: list[str] = field(default_factory=list)

    @property
    def retry_eligible(self) -> bool:
        return self.outcome.retry_eligible


@dataclass(frozen=True, slots=True)
class Classification:
    outcome: Outcome
    payload: dict[str, Any] | None
    error: str | None = None


def _summarize_details(result: dict[str, Any]) -> str:
    details = result.get("details")
    if not isinstance(details, list) or not details:
        return str(result.get("message") or "deploy command reported a failure")
    messages = []
    for detail in details[:_MAX_DETAILS_IN_SUMMARY]:
        if isinstance(detail, dict):
            messages.append(
                str(detail.get("problem") or detail.get("message") or detail.get("name") or detail)
            )
        else:
            messages.append(str(detail))
    if len(details) > _MAX_DETAILS_IN_SUMMARY:
        messages.append(f"... and {len(details) - _MAX_DETAILS_IN_SUMMARY} more")
    return "; ".join(messages)


def classify_output(exit_code: int, stdout: str) -> Classification:
    """Classify raw deploy output.

    The recognized shape is ``{"status": int, "result": {"details": [...]}}``.

    >>> classify_output(0, '{"status": 0, "result": {}}').outcome
    <Outcome.SUCCESS: 'success'>
    >>> classify_output(1, '{"status": 1, "result": {"details": ["bad field"]}}').outcome
    <Outcome.APPLICATION_FAILURE: 'application_failure'>
    >>> classify_output(137, "Killed").outcome
    <Outcome.INFRASTRUCTURE_FAILURE: 'infrastructure_failure'>
    """
    try:
        payload = json.loads(stdout)
    except (json.JSONDecodeError, TypeError):
        reason = "unparseable output" if exit_code == 0 else f"exit code {exit_code} without JSON"
        return Classification(Outcome.INFRASTRUCTURE_FAILURE, None, reason)

    if not isinstance(payload, dict):
        return Classification(
            Outcome.INFRASTRUCTURE_FAILURE, None, "malformed output: expected a JSON object"
        )

    status = payload.get("status")
    if not isinstance(status, int) or isinstance(status, bool):
        return Classification(
            Outcome.INFRASTRUCTURE_FAILURE, payload, "malformed output: missing integer 'status'"
        )

    if status == 0:
        if exit_code != 0:
            return Classification(
                Outcome.INFRASTRUCTURE_FAILURE,
                payload,
                f"process exited {exit_code} but reported status 0",
            )
        return Classification(Outcome.SUCCESS, payload)

    result = payload.get("result")
    if isinstance(result, dict):
        return Classification(Outcome.APPLICATION_FAILURE, payload, _summarize_details(result))
    return Classification(
        Outcome.INFRASTRUCTURE_FAILURE,
        payload,
        str(payload.get("message") or f"status {status} without a result"),
    )


class CommandExecutor:
    """Runs deploy commands through a deployer port.

    Examples
    --------
    Example usage::

        executor = CommandExecutor(SubprocessDeployer(templates))
        result = await executor.execute(env, command, timeout=600)
        if result.retry_eligible:
            ...
    """

    def __init__(self, deployer: DeployerPort, default_timeout: float | None = None) -> None:
        self.deployer = deployer
        self.default_timeout = default_timeout

    def render(self, command: DeployCommand) -> list[str]:
        return self.deployer.render(command)

    async def execute(
        self,
        environment: Environment,
        command: DeployCommand,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """Invoke one deploy command and classify the result.

        Never raises for deploy-side problems: every failure mode is
        reported through :attr:`CommandResult.outcome`.
        """
        if command.environment_id != environment.id:
            raise ValueError(
                f"Command targets '{command.environment_id}' but environment is '{environment.id}'"
            )

        timeout = timeout if timeout is not None else self.default_timeout
        argv = self.render(command)
        started = time.monotonic()

        if cancel_event is not None and cancel_event.is_set():
            return CommandResult(Outcome.TIMEOUT, None, None, 0.0, "run cancelled", argv)

        invoke_task = asyncio.ensure_future(self.deployer.invoke(command))
        waiters: set[asyncio.Future[Any]] = {invoke_task}
        cancel_task: asyncio.Future[Any] | None = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            invoke_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        duration_ms = (time.monotonic() - started) * 1000

        if invoke_task not in done:
            # No partial credit: stop the process and report a timeout
            invoke_task.cancel()
            with suppress(asyncio.CancelledError):
                await invoke_task
            if cancel_event is not None and cancel_event.is_set():
                reason = "run cancelled"
            else:
                reason = f"timed out after {timeout}s"
            logger.warning(
                "Deploy command for '{env}' {reason}", env=environment.id, reason=reason
            )
            return CommandResult(Outcome.TIMEOUT, None, None, duration_ms, reason, argv)

        try:
            raw = invoke_task.result()
        except Exception as exc:
            logger.warning(
                "Deploy boundary unreachable for '{env}': {error}", env=environment.id, error=exc
            )
            return CommandResult(
                Outcome.INFRASTRUCTURE_FAILURE,
                None,
                None,
                duration_ms,
                f"{type(exc).__name__}: {exc}",
                argv,
            )

        classification = classify_output(raw.exit_code, raw.stdout)
        error = classification.error
        if error and raw.stderr and classification.outcome is Outcome.INFRASTRUCTURE_FAILURE:
            error = f"{error}: {raw.stderr.strip()[:500]}"
        logger.debug(
            "Deploy command for '{env}' finished: {outcome} (exit {code}, {ms:.0f}ms)",
            env=environment.id,
            outcome=classification.outcome.value,
            code=raw.exit_code,
            ms=duration_ms,
        )
        return CommandResult(
            classification.outcome,
            raw.exit_code,
            classification.payload,
            duration_ms,
            error,
            raw.argv or argv,
        )
