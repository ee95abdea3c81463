"""History command for the deploydag CLI."""

import typer

from deploydag.cli.commands.status_cmd import attempts_table
from deploydag.cli.utils import console, open_audit_log, output_format, print_output


def history(
    ctx: typer.Context,
    environment: str = typer.Argument(..., help="Environment id"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Most recent entries to show"),
) -> None:
    """Show the newest audit entries for ENVIRONMENT, oldest first."""
    audit_log = open_audit_log(ctx)
    attempts = audit_log.attempts_for_environment(environment)[-limit:]

    if output_format(ctx) != "pretty":
        print_output([a.model_dump(mode="json") for a in attempts], ctx)
        return

    if not attempts:
        console.print(f"[yellow]No audit entries for '{environment}'[/yellow]")
        return
    console.print(attempts_table(attempts, title=f"History of {environment}"))
