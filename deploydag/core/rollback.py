"""Rollback coordinator: restore the last known-good artifact of an environment."""

from __future__ import annotations

import asyncio
import time
import uuid

from deploydag.core.audit import AuditLog
from deploydag.core.domain.run import AttemptKind, Outcome, StageAction, StageAttempt
from deploydag.core.exceptions import NoKnownGoodState
from deploydag.core.executor import CommandExecutor
from deploydag.core.logging import get_logger
from deploydag.core.ports.deployer import DeployCommand
from deploydag.core.registry import EnvironmentRegistry
from deploydag.core.utils.artifacts import ArtifactStore, hash_artifact

logger = get_logger(__name__)


def new_rollback_run_id() -> str:
    return f"rollback-{uuid.uuid4()}"


class RollbackCoordinator:
    """Re-deploys the most recent successful artifact for an environment.

    History is never touched: the rollback is appended to the audit log as a
    new ``rollback`` attempt whose ``reference_attempt_id`` names the attempt
    being restored.

    The content shipped is always the content the known-good attempt
    recorded: the snapshot from ``artifact_store`` when one exists, otherwise
    the original path, and only while it still hashes to the recorded value.
    A rollback that cannot find that content fails without calling the
    deployer.
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        executor: CommandExecutor,
        audit_log: AuditLog,
        default_timeout: float | None = None,
        artifact_store: ArtifactStore | None = None,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.audit_log = audit_log
        self.default_timeout = default_timeout
        self.artifact_store = artifact_store

    def resolve_known_good(
        self, environment_id: str, exclude_run_id: str | None = None
    ) -> StageAttempt:
        """Find the attempt a rollback would restore.

        Raises
        ------
        UnknownEnvironment
            If the environment is not registered.
        NoKnownGoodState
            If the environment has no successful deploy on record.
        """
        self.registry.resolve(environment_id)
        source = self.audit_log.last_success(
            environment_id, StageAction.DEPLOY, exclude_run_id=exclude_run_id
        )
        if source is None:
            raise NoKnownGoodState(environment_id)
        return source

    def locate_artifact(self, source: StageAttempt) -> str | None:
        """Return a path holding exactly the content ``source`` deployed, or None."""
        artifact_path = source.artifact_path or ""
        if not source.artifact_hash:
            return artifact_path
        if self.artifact_store is not None:
            snapshot = self.artifact_store.get(source.artifact_hash)
            if snapshot is not None:
                return str(snapshot)
        if hash_artifact(artifact_path) == source.artifact_hash:
            return artifact_path
        return None

    async def rollback(
        self,
        environment_id: str,
        *,
        exclude_run_id: str | None = None,
        run_id: str | None = None,
        attempt_number: int = 1,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> StageAttempt:
        """Restore the last known-good deploy of ``environment_id``.

        Returns the new rollback attempt; check ``attempt.succeeded``.
        ``attempt_number`` lets a run continue the numbering of the stage
        being rolled back.

        Raises
        ------
        UnknownEnvironment
            If the environment is not registered.
        NoKnownGoodState
            If the environment has no successful deploy on record.
        """
        environment = self.registry.resolve(environment_id)
        source = self.resolve_known_good(environment_id, exclude_run_id)
        started_at = time.time()
        fields = {
            "run_id": run_id or new_rollback_run_id(),
            "stage": source.stage,
            "environment": environment.id,
            "attempt": attempt_number,
            "kind": AttemptKind.ROLLBACK,
            "action": StageAction.DEPLOY,
            "artifact_path": source.artifact_path,
            "artifact_hash": source.artifact_hash,
            "revision": source.revision,
            "reference_attempt_id": source.attempt_id,
        }

        deploy_path = await asyncio.to_thread(self.locate_artifact, source)
        if deploy_path is None:
            attempt = StageAttempt(
                **fields,
                started_at=started_at,
                finished_at=time.time(),
                outcome=Outcome.INFRASTRUCTURE_FAILURE,
                error=(
                    f"artifact at {source.artifact_path} changed since attempt "
                    f"{source.attempt_id} and no snapshot of {source.artifact_hash} is stored"
                ),
            )
            self.audit_log.append(attempt)
            logger.error(
                "Rollback of '{env}' failed: {error}", env=environment_id, error=attempt.error
            )
            return attempt

        logger.info(
            "Rolling back '{env}' to revision {rev} from run {run} using {path}",
            env=environment_id,
            rev=source.revision,
            run=source.run_id,
            path=deploy_path,
        )
        command = DeployCommand(
            environment_id=environment.id,
            credential_ref=environment.credential_ref,
            artifact_path=deploy_path,
            test_level=environment.test_level,
            action=StageAction.DEPLOY,
            revision=source.revision,
        )
        result = await self.executor.execute(
            environment,
            command,
            timeout=timeout if timeout is not None else self.default_timeout,
            cancel_event=cancel_event,
        )
        attempt = StageAttempt(
            **fields,
            started_at=started_at,
            finished_at=time.time(),
            outcome=result.outcome,
            exit_code=result.exit_code,
            output=result.structured_output,
            error=result.error,
            command=result.argv,
            retry_eligible=result.retry_eligible,
        )
        self.audit_log.append(attempt)

        if attempt.succeeded:
            logger.info("Rollback of '{env}' succeeded", env=environment_id)
        else:
            logger.error(
                "Rollback of '{env}' failed: {outcome} {error}",
                env=environment_id,
                outcome=attempt.outcome.value,
                error=attempt.error or "",
            )
        return attempt
