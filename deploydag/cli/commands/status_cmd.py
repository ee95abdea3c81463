"""Status command for the deploydag CLI."""

from datetime import datetime

import typer
from rich.markup import escape
from rich.table import Table

from deploydag.cli.utils import (
    EXIT_FAILURE,
    console,
    fail,
    open_audit_log,
    output_format,
    print_output,
)
from deploydag.core.domain.run import StageAttempt


def format_timestamp(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def attempts_table(attempts: list[StageAttempt], title: str | None = None) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Env")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Outcome")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for attempt in attempts:
        color = "green" if attempt.succeeded else "red"
        table.add_row(
            attempt.stage,
            attempt.environment,
            str(attempt.attempt),
            attempt.kind.value,
            f"[{color}]{attempt.outcome.value}[/{color}]",
            format_timestamp(attempt.started_at),
            f"{attempt.duration_ms / 1000:.1f}s",
            escape(attempt.error or ""),
        )
    return table


def status(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="Run id printed by 'deploydag run'"),
) -> None:
    """Show a run and its stage attempts."""
    audit_log = open_audit_log(ctx)
    record = audit_log.get_run(run_id)
    attempts = audit_log.attempts_for_run(run_id)
    if record is None and not attempts:
        raise fail(f"Run {run_id} not found", EXIT_FAILURE)

    if output_format(ctx) != "pretty":
        print_output(
            {
                "run": record.model_dump(mode="json") if record else None,
                "attempts": [a.model_dump(mode="json") for a in attempts],
            },
            ctx,
        )
        return

    if record is not None:
        console.print(f"[bold]Run {record.run_id}[/bold]: {record.status.value}")
        console.print(
            f"  revision {record.revision} on '{record.branch}' by {record.actor}, "
            f"started {format_timestamp(record.started_at)}, "
            f"finished {format_timestamp(record.finished_at)}"
        )
        for stage, reason in record.skip_reasons.items():
            console.print(f"  [yellow]skipped[/yellow] {stage}: {reason}")
    else:
        console.print(f"[bold]Run {run_id}[/bold]: not archived (rollback or interrupted run)")
    console.print(attempts_table(attempts))
