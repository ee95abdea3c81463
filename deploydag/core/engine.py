"""Pipeline engine: walks the stage DAG wave by wave.

Stages inside a wave run concurrently with ``asyncio.gather``; the next
wave starts only after every stage of the current one is resolved. A stage
runs only when all of its upstream stages succeeded, its trigger predicate
holds and, for environments that require it, the run carries an approval.
Everything else is skipped, which also prunes its dependents.

Per-stage state machine::

    PENDING -> RUNNING -> SUCCEEDED
                      \\-> FAILED -> PENDING (retry, while budget remains)
    PENDING -> SKIPPED
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from pathlib import Path

from deploydag.core.audit import AuditLog
from deploydag.core.domain.dag import StageGraph, StageGraphError, StageSpec
from deploydag.core.domain.run import (
    Outcome,
    Run,
    RunStatus,
    StageAction,
    StageAttempt,
    StageStatus,
)
from deploydag.core.exceptions import (
    ApplicationFailure,
    ConfigurationError,
    InfrastructureFailure,
    NoKnownGoodState,
    StageTimeout,
)
from deploydag.core.executor import CommandExecutor
from deploydag.core.logging import get_logger, reset_correlation_id, set_correlation_id
from deploydag.core.ports.deployer import DeployCommand
from deploydag.core.registry import EnvironmentRegistry
from deploydag.core.retry import execute_with_retry
from deploydag.core.rollback import RollbackCoordinator
from deploydag.core.triggers import RunContext, TriggerEvent
from deploydag.core.utils.artifacts import ArtifactStore, hash_artifact

logger = get_logger(__name__)

DEFAULT_ARTIFACT_PATH = "force-app"


class PipelineEngine:
    """Executes a stage graph against the environment registry.

    Examples
    --------
    Example usage::

        engine = PipelineEngine(graph, registry, executor, audit_log, rollback=coordinator)
        run = await engine.run(TriggerEvent(branch="develop", revision="abc123"))
        assert run.status is RunStatus.SUCCEEDED
    """

    def __init__(
        self,
        graph: StageGraph,
        registry: EnvironmentRegistry,
        executor: CommandExecutor,
        audit_log: AuditLog,
        *,
        rollback: RollbackCoordinator | None = None,
        default_timeout: float | None = None,
        artifact_path: str | Path = DEFAULT_ARTIFACT_PATH,
        artifact_store: ArtifactStore | None = None,
    ) -> None:
        self.graph = graph
        self.registry = registry
        self.executor = executor
        self.audit_log = audit_log
        self.rollback = rollback
        self.default_timeout = default_timeout
        self.artifact_path = str(artifact_path)
        self.artifact_store = artifact_store
        self._active: dict[str, asyncio.Event] = {}

    def validate(self) -> list[list[str]]:
        """Check the stage graph and its environments; return the execution waves.

        Raises
        ------
        ConfigurationError
            On missing dependencies, cycles or stages targeting unknown environments.
        """
        try:
            self.graph.validate()
            waves = self.graph.waves()
        except StageGraphError as e:
            raise ConfigurationError("stages", str(e)) from e

        unknown = [
            f"stage '{stage.name}' targets unknown environment '{stage.environment}'"
            for stage in self.graph
            if stage.environment not in self.registry
        ]
        if unknown:
            raise ConfigurationError("stages", "; ".join(unknown))
        return waves

    def cancel(self, run_id: str | None = None) -> None:
        """Cancel one active run, or all of them when ``run_id`` is None.

        In-flight deploy commands are stopped and classified as timeouts;
        stages that already resolved are left as they are.
        """
        for active_id, event in list(self._active.items()):
            if run_id is None or active_id == run_id:
                logger.warning("Cancelling run {run}", run=active_id)
                event.set()

    async def run(
        self,
        event: TriggerEvent,
        *,
        approvals: Iterable[str] = (),
        artifact_path: str | Path | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Run:
        """Execute one pipeline run for a trigger event.

        Stage failures never escape: the returned Run carries the terminal
        status. Only configuration problems raise, and they do so before any
        stage executes.

        Raises
        ------
        ConfigurationError
            If the graph or its environments are invalid.
        """
        waves = self.validate()
        self.registry.freeze()

        run = Run(revision=event.revision, branch=event.branch, actor=event.actor)
        run.stage_status = dict.fromkeys(self.graph.stages, StageStatus.PENDING)
        run.artifact_path = str(artifact_path) if artifact_path is not None else self.artifact_path
        run.artifact_hash = await self._fingerprint(run.artifact_path)

        cancel_event = cancel_event or asyncio.Event()
        context = RunContext(
            event=event, stage_status=run.stage_status, approvals=frozenset(approvals)
        )

        self._active[run.run_id] = cancel_event
        token = set_correlation_id(run.run_id)
        run.status = RunStatus.RUNNING
        run.started_at = time.time()
        logger.info(
            "Run {run} started: revision {rev} on '{branch}' by {actor} ({n} waves)",
            run=run.run_id,
            rev=event.revision,
            branch=event.branch,
            actor=event.actor,
            n=len(waves),
        )

        try:
            for wave_index, wave in enumerate(waves, start=1):
                ready: list[StageSpec] = []
                for name in wave:
                    stage = self.graph.stages[name]
                    reason = self._blocking_reason(stage, run, context, cancel_event)
                    if reason is not None:
                        run.skip(name, reason)
                        logger.info("Stage '{stage}' skipped: {reason}", stage=name, reason=reason)
                    else:
                        ready.append(stage)

                if not ready:
                    continue
                logger.debug(
                    "Wave {idx}: dispatching {stages}",
                    idx=wave_index,
                    stages=[s.name for s in ready],
                )
                await asyncio.gather(
                    *(self._run_stage(run, stage, cancel_event) for stage in ready)
                )

            status = self._final_status(run, cancel_event)
            self.audit_log.archive(run.finish(status))
            logger.info(
                "Run {run} finished: {status} ({n} attempts)",
                run=run.run_id,
                status=status.value,
                n=len(run.attempts),
            )
        except BaseException:
            if not run.status.is_terminal:
                run.cancelled = cancel_event.is_set()
                self.audit_log.archive(run.finish(RunStatus.FAILED))
            raise
        finally:
            self._active.pop(run.run_id, None)
            reset_correlation_id(token)

        return run

    def _blocking_reason(
        self,
        stage: StageSpec,
        run: Run,
        context: RunContext,
        cancel_event: asyncio.Event,
    ) -> str | None:
        if cancel_event.is_set():
            return "run cancelled"
        for dep in sorted(stage.deps):
            dep_status = run.stage_status[dep]
            if dep_status is not StageStatus.SUCCEEDED:
                return f"upstream stage '{dep}' {dep_status.value}"
        if not stage.trigger(context):
            return f"trigger not met ({stage.trigger_description})"
        environment = self.registry.resolve(stage.environment)
        if environment.approval_required and environment.id not in context.approvals:
            return f"awaiting approval for '{environment.id}'"
        return None

    async def _run_stage(self, run: Run, stage: StageSpec, cancel_event: asyncio.Event) -> None:
        environment = self.registry.resolve(stage.environment)
        timeout = stage.timeout if stage.timeout is not None else self.default_timeout
        command = DeployCommand(
            environment_id=environment.id,
            credential_ref=environment.credential_ref,
            artifact_path=run.artifact_path or self.artifact_path,
            test_level=environment.test_level,
            action=stage.action,
            revision=run.revision,
        )

        async def attempt_once(attempt_number: int) -> StageAttempt:
            if run.stage_status[stage.name] is StageStatus.FAILED:
                run.transition(stage.name, StageStatus.PENDING)
            run.transition(stage.name, StageStatus.RUNNING)
            logger.info(
                "Stage '{stage}' attempt {n}/{max}: {action} -> {env}",
                stage=stage.name,
                n=attempt_number,
                max=stage.retry.max_attempts,
                action=stage.action.value,
                env=environment.id,
            )
            started_at = time.time()
            result = await self.executor.execute(environment, command, timeout, cancel_event)
            attempt = StageAttempt(
                run_id=run.run_id,
                stage=stage.name,
                environment=environment.id,
                attempt=attempt_number,
                action=stage.action,
                started_at=started_at,
                finished_at=time.time(),
                outcome=result.outcome,
                exit_code=result.exit_code,
                output=result.structured_output,
                error=result.error,
                command=result.argv,
                artifact_path=command.artifact_path,
                artifact_hash=run.artifact_hash,
                revision=run.revision,
                retry_eligible=result.retry_eligible,
            )
            run.record_attempt(attempt)
            self.audit_log.append(attempt)

            if result.outcome is Outcome.SUCCESS:
                run.transition(stage.name, StageStatus.SUCCEEDED)
                return attempt

            run.transition(stage.name, StageStatus.FAILED)
            reason = result.error or result.outcome.value
            if result.outcome is Outcome.APPLICATION_FAILURE:
                raise ApplicationFailure(stage.name, reason)
            if result.outcome is Outcome.TIMEOUT:
                raise StageTimeout(stage.name, timeout, reason)
            raise InfrastructureFailure(stage.name, reason)

        def on_retry(attempt: int, max_attempts: int, error: BaseException, delay: float) -> None:
            logger.warning(
                "Stage '{stage}' attempt {n}/{max} failed: {error}; retrying in {delay:.2f}s",
                stage=stage.name,
                n=attempt,
                max=max_attempts,
                error=error,
                delay=delay,
            )

        try:
            await execute_with_retry(
                attempt_once,
                stage.retry,
                retry_on=(InfrastructureFailure,),
                should_continue=lambda: not cancel_event.is_set(),
                on_retry=on_retry,
                interrupt=cancel_event,
            )
        except (ApplicationFailure, InfrastructureFailure) as e:
            logger.error("Stage '{stage}' failed: {error}", stage=stage.name, error=e)
            if (
                stage.rollback_on_failure
                and stage.action is StageAction.DEPLOY
                and self.rollback is not None
                and not cancel_event.is_set()
            ):
                await self._rollback_stage(run, stage, timeout)
            return

        logger.info("Stage '{stage}' succeeded", stage=stage.name)

    async def _rollback_stage(self, run: Run, stage: StageSpec, timeout: float | None) -> None:
        assert self.rollback is not None
        try:
            attempt = await self.rollback.rollback(
                stage.environment,
                exclude_run_id=run.run_id,
                run_id=run.run_id,
                attempt_number=len(run.attempts_for(stage.name)) + 1,
                timeout=timeout,
            )
        except NoKnownGoodState as e:
            logger.warning("Stage '{stage}' not rolled back: {error}", stage=stage.name, error=e)
            return
        run.rollback_attempts.append(attempt)

    async def _fingerprint(self, artifact_path: str) -> str:
        if self.artifact_store is None:
            return await asyncio.to_thread(hash_artifact, artifact_path)
        artifact_hash, snapshot = await asyncio.to_thread(
            self.artifact_store.capture, artifact_path
        )
        if snapshot is not None:
            logger.debug(
                "Artifact {path} captured as {hash}", path=artifact_path, hash=artifact_hash
            )
        return artifact_hash

    def _final_status(self, run: Run, cancel_event: asyncio.Event) -> RunStatus:
        if cancel_event.is_set():
            run.cancelled = True
            return RunStatus.FAILED

        failed = [
            self.graph.stages[name]
            for name, status in run.stage_status.items()
            if status is StageStatus.FAILED
        ]
        if not failed:
            return RunStatus.SUCCEEDED

        # Rolled back only if every failed stage had its environment restored
        restored = {a.environment for a in run.rollback_attempts if a.succeeded}
        if all(s.rollback_on_failure and s.environment in restored for s in failed):
            return RunStatus.ROLLED_BACK
        return RunStatus.FAILED
