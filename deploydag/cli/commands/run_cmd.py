"""Run command for the deploydag CLI."""

import asyncio
import signal
from contextlib import suppress
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from deploydag.cli.utils import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_OK,
    build_components,
    console,
    fail,
    output_format,
    print_output,
)
from deploydag.core.domain.run import Run, RunStatus, StageStatus
from deploydag.core.engine import PipelineEngine
from deploydag.core.exceptions import ConfigurationError
from deploydag.core.triggers import TriggerEvent

_STATUS_STYLES = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "red",
    StageStatus.SKIPPED: "yellow",
    StageStatus.RUNNING: "cyan",
    StageStatus.PENDING: "dim",
}


async def execute_run(
    engine: PipelineEngine,
    event: TriggerEvent,
    approvals: list[str],
    artifact_path: Path | None,
) -> Run:
    """Run the engine with SIGINT and SIGTERM wired to cancellation."""
    loop = asyncio.get_running_loop()
    cancel_event = asyncio.Event()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, cancel_event.set)
            installed.append(sig)
    try:
        return await engine.run(
            event, approvals=approvals, artifact_path=artifact_path, cancel_event=cancel_event
        )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def run_summary(run: Run) -> dict[str, Any]:
    record = run.to_record().model_dump(mode="json")
    record["attempts"] = [a.model_dump(mode="json") for a in run.attempts]
    record["rollback_attempts"] = [a.model_dump(mode="json") for a in run.rollback_attempts]
    return record


def _render_run(run: Run) -> None:
    table = Table(title=f"Run {run.run_id}", show_header=True, header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Detail")
    for stage, status in run.stage_status.items():
        attempts = run.attempts_for(stage)
        detail = run.skip_reasons.get(stage, "")
        if status is StageStatus.FAILED and attempts:
            detail = attempts[-1].error or attempts[-1].outcome.value
        style = _STATUS_STYLES.get(status, "white")
        table.add_row(
            stage, f"[{style}]{status.value}[/{style}]", str(len(attempts)), escape(detail)
        )
    console.print(table)

    color = "green" if run.status is RunStatus.SUCCEEDED else "red"
    suffix = " (cancelled)" if run.cancelled else ""
    console.print(f"[{color}]Run {run.status.value}{suffix}[/{color}]")


def run(
    ctx: typer.Context,
    revision: str = typer.Argument(..., help="Revision (commit sha) to deploy"),
    branch: str = typer.Argument(..., help="Branch the revision was pushed to"),
    actor: str = typer.Option("unknown", "--actor", "-a", help="Who triggered the run"),
    artifact: Path | None = typer.Option(
        None, "--artifact", help="Artifact path (default: settings.artifact_path)"
    ),
    approve: list[str] | None = typer.Option(
        None, "--approve", help="Approve an environment that requires approval (repeatable)"
    ),
) -> None:
    """Run the pipeline for REVISION pushed to BRANCH.

    Exit codes: 0 success, 1 pipeline failure or rollback, 2 configuration error.

    Examples
    --------
    deploydag run 3f2a9c1 develop --actor alice
    deploydag run 3f2a9c1 main --approve prod
    """
    try:
        event = TriggerEvent(branch=branch, revision=revision, actor=actor)
    except ValidationError as e:
        raise fail(f"Invalid trigger: {e.errors()[0]['msg']}", EXIT_CONFIG_ERROR) from e
    components = build_components(ctx)

    try:
        result = asyncio.run(execute_run(components.engine, event, approve or [], artifact))
    except ConfigurationError as e:
        raise fail(str(e), EXIT_CONFIG_ERROR) from e

    if output_format(ctx) == "pretty":
        _render_run(result)
    else:
        print_output(run_summary(result), ctx)

    raise typer.Exit(EXIT_OK if result.status is RunStatus.SUCCEEDED else EXIT_FAILURE)
