"""Append-only audit log of stage attempts and archived runs.

Two JSON Lines files live in the audit directory:

- ``attempts.jsonl``: one :class:`StageAttempt` per line, in completion order
- ``runs.jsonl``: one :class:`RunRecord` per line, written when a run ends

Nothing is ever rewritten. A correction is a new attempt whose
``reference_attempt_id`` points at the attempt it corrects.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from deploydag.core.domain.run import AttemptKind, RunRecord, StageAction, StageAttempt
from deploydag.core.exceptions import AuditLogError
from deploydag.core.logging import get_logger

logger = get_logger(__name__)

ATTEMPTS_FILE = "attempts.jsonl"
RUNS_FILE = "runs.jsonl"


class AuditLog:
    """Append-only record of every stage attempt.

    Without a directory the log lives in memory only. With one, existing
    entries are loaded on open and every append is written through.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self.directory = Path(directory) if directory is not None else None
        self._attempts: list[StageAttempt] = []
        self._runs: dict[str, RunRecord] = {}
        self._lock = threading.Lock()
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._attempts = list(self._load(self.directory / ATTEMPTS_FILE, StageAttempt))
            for record in self._load(self.directory / RUNS_FILE, RunRecord):
                self._runs[record.run_id] = record
            logger.debug(
                "Opened audit log at {dir}: {n} attempts, {r} runs",
                dir=self.directory,
                n=len(self._attempts),
                r=len(self._runs),
            )

    @staticmethod
    def _load(path: Path, model: type[StageAttempt] | type[RunRecord]) -> Iterator:
        if not path.exists():
            return
        with path.open(encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield model.model_validate_json(line)
                except PydanticValidationError as e:
                    raise AuditLogError(str(path), f"line {line_no}: {e}") from e

    def _write_line(self, filename: str, line: str) -> None:
        if self.directory is None:
            return
        with (self.directory / filename).open("a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, attempt: StageAttempt) -> None:
        """Append one attempt. The only way attempts enter the log."""
        with self._lock:
            self._write_line(ATTEMPTS_FILE, attempt.model_dump_json())
            self._attempts.append(attempt)
        logger.debug(
            "Audit: {stage}#{n} on {env} -> {outcome}",
            stage=attempt.stage,
            n=attempt.attempt,
            env=attempt.environment,
            outcome=attempt.outcome.value,
        )

    def archive(self, record: RunRecord) -> None:
        """Store the terminal snapshot of a run."""
        with self._lock:
            if record.run_id in self._runs:
                raise AuditLogError(RUNS_FILE, f"run '{record.run_id}' is already archived")
            self._write_line(RUNS_FILE, record.model_dump_json())
            self._runs[record.run_id] = record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def attempts(self) -> list[StageAttempt]:
        with self._lock:
            return list(self._attempts)

    def attempts_for_run(self, run_id: str) -> list[StageAttempt]:
        return [a for a in self.attempts() if a.run_id == run_id]

    def attempts_for_environment(self, environment_id: str) -> list[StageAttempt]:
        return [a for a in self.attempts() if a.environment == environment_id]

    def get_attempt(self, attempt_id: str) -> StageAttempt | None:
        return next((a for a in self.attempts() if a.attempt_id == attempt_id), None)

    def last_success(
        self,
        environment_id: str,
        action: StageAction = StageAction.DEPLOY,
        exclude_run_id: str | None = None,
    ) -> StageAttempt | None:
        """Most recent successful stage attempt of ``action`` for an environment.

        Rollback attempts are not considered, so restoring is repeatable.
        """
        for attempt in reversed(self.attempts()):
            if (
                attempt.environment == environment_id
                and attempt.kind is AttemptKind.STAGE
                and attempt.action is action
                and attempt.succeeded
                and attempt.run_id != exclude_run_id
            ):
                return attempt
        return None

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._lock:
            return self._runs.get(run_id)

    def runs(self) -> list[RunRecord]:
        with self._lock:
            return list(self._runs.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)
