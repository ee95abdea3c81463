"""Domain models for pipeline runs and stage attempts.

A :class:`Run` is mutated only by the pipeline engine while it executes.
Once it reaches a terminal status it is archived as an immutable
:class:`RunRecord`. Every execution of an external deploy command becomes a
:class:`StageAttempt`, which is immutable from the moment it is created.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deploydag.core.exceptions import InvalidTransitionError


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES


_TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ROLLED_BACK})


class StageStatus(StrEnum):
    """State of one stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# FAILED -> PENDING is the retry re-entry; the engine stops re-entering once
# the retry budget is spent, which makes FAILED terminal.
STAGE_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
    StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED}),
    StageStatus.FAILED: frozenset({StageStatus.PENDING}),
    StageStatus.SUCCEEDED: frozenset(),
    StageStatus.SKIPPED: frozenset(),
}


class Outcome(StrEnum):
    """Classification of a single deploy command invocation."""

    SUCCESS = "success"
    APPLICATION_FAILURE = "application_failure"
    INFRASTRUCTURE_FAILURE = "infrastructure_failure"
    TIMEOUT = "timeout"

    @property
    def retry_eligible(self) -> bool:
        """Transient outcomes are retried; application failures need a human."""
        return self in (Outcome.INFRASTRUCTURE_FAILURE, Outcome.TIMEOUT)


class StageAction(StrEnum):
    """What a stage asks the deploy boundary to do."""

    VALIDATE = "validate"
    DEPLOY = "deploy"


class AttemptKind(StrEnum):
    STAGE = "stage"
    ROLLBACK = "rollback"


class StageAttempt(BaseModel):
    """Immutable record of one deploy command invocation."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    run_id: str
    stage: str
    environment: str
    attempt: int = Field(ge=1)
    kind: AttemptKind = AttemptKind.STAGE
    action: StageAction = StageAction.DEPLOY
    started_at: float
    finished_at: float
    outcome: Outcome
    exit_code: int | None = None
    output: dict[str, Any] | None = None
    error: str | None = None
    command: list[str] = Field(default_factory=list)
    artifact_path: str | None = None
    artifact_hash: str | None = None
    revision: str | None = None
    retry_eligible: bool = False
    reference_attempt_id: str | None = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at) * 1000

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS


class RunRecord(BaseModel):
    """Archived, immutable snapshot of a terminal run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    revision: str
    branch: str
    actor: str
    status: RunStatus
    created_at: float
    started_at: float | None = None
    finished_at: float | None = None
    stage_status: dict[str, StageStatus] = Field(default_factory=dict)
    skip_reasons: dict[str, str] = Field(default_factory=dict)
    attempt_ids: list[str] = Field(default_factory=list)
    rollback_attempt_ids: list[str] = Field(default_factory=list)
    artifact_path: str | None = None
    artifact_hash: str | None = None
    cancelled: bool = False


@dataclass(slots=True)
class Run:
    """One pipeline execution instance."""

    revision: str
    branch: str
    actor: str = "unknown"
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.PENDING
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None
    attempts: list[StageAttempt] = field(default_factory=list)
    stage_status: dict[str, StageStatus] = field(default_factory=dict)
    skip_reasons: dict[str, str] = field(default_factory=dict)
    rollback_attempts: list[StageAttempt] = field(default_factory=list)
    artifact_path: str | None = None
    artifact_hash: str | None = None
    cancelled: bool = False

    def transition(self, stage: str, to_status: StageStatus) -> None:
        """Move a stage to a new status, enforcing the stage state machine."""
        self._ensure_mutable()
        current = self.stage_status.get(stage, StageStatus.PENDING)
        if to_status not in STAGE_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Stage '{stage}' cannot move from {current.value} to {to_status.value}"
            )
        self.stage_status[stage] = to_status

    def skip(self, stage: str, reason: str) -> None:
        self.transition(stage, StageStatus.SKIPPED)
        self.skip_reasons[stage] = reason

    def record_attempt(self, attempt: StageAttempt) -> None:
        """Append an attempt, keeping attempt numbers strictly increasing per stage."""
        self._ensure_mutable()
        previous = self.attempts_for(attempt.stage)
        if previous and attempt.attempt <= previous[-1].attempt:
            raise InvalidTransitionError(
                f"Attempt {attempt.attempt} for stage '{attempt.stage}' is not after "
                f"attempt {previous[-1].attempt}"
            )
        self.attempts.append(attempt)

    def attempts_for(self, stage: str) -> list[StageAttempt]:
        return [a for a in self.attempts if a.stage == stage]

    def finish(self, status: RunStatus) -> RunRecord:
        """Set the terminal status and archive the run."""
        self._ensure_mutable()
        if not status.is_terminal:
            raise InvalidTransitionError(f"Run cannot finish with non-terminal status {status}")
        self.status = status
        self.finished_at = time.time()
        return self.to_record()

    def to_record(self) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            revision=self.revision,
            branch=self.branch,
            actor=self.actor,
            status=self.status,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            stage_status=dict(self.stage_status),
            skip_reasons=dict(self.skip_reasons),
            attempt_ids=[a.attempt_id for a in self.attempts],
            rollback_attempt_ids=[a.attempt_id for a in self.rollback_attempts],
            artifact_path=self.artifact_path,
            artifact_hash=self.artifact_hash,
            cancelled=self.cancelled,
        )

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Run '{self.run_id}' is archived ({self.status.value})")
