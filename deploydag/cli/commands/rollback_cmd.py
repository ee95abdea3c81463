"""Rollback command for the deploydag CLI."""

import asyncio

import typer

from deploydag.cli.utils import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_NO_KNOWN_GOOD,
    EXIT_OK,
    build_components,
    console,
    fail,
    output_format,
    print_output,
)
from deploydag.core.exceptions import NoKnownGoodState, UnknownEnvironment


def rollback(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment id to restore"),
    exclude_run: str | None = typer.Option(
        None, "--exclude-run", help="Ignore successes from this run (e.g. a flagged release)"
    ),
) -> None:
    """Re-deploy the last known-good artifact of ENVIRONMENT.

    Exit codes: 0 restored, 1 rollback command failed, 2 unknown environment
    or configuration error, 3 no known-good deploy on record.
    """
    components = build_components(ctx)

    try:
        attempt = asyncio.run(
            components.rollback.rollback(environment, exclude_run_id=exclude_run)
        )
    except UnknownEnvironment as e:
        raise fail(str(e), EXIT_CONFIG_ERROR) from e
    except NoKnownGoodState as e:
        raise fail(str(e), EXIT_NO_KNOWN_GOOD) from e

    if output_format(ctx) == "pretty":
        if attempt.succeeded:
            console.print(
                f"[green]✓ Restored '{environment}' to revision {attempt.revision} "
                f"(from attempt {attempt.reference_attempt_id})[/green]"
            )
        else:
            console.print(
                f"[red]✗ Rollback of '{environment}' failed: "
                f"{attempt.error or attempt.outcome.value}[/red]"
            )
    else:
        print_output(attempt.model_dump(mode="json"), ctx)

    raise typer.Exit(EXIT_OK if attempt.succeeded else EXIT_FAILURE)
