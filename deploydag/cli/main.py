"""deploydag CLI - Main entrypoint."""

from pathlib import Path

import typer

from deploydag import __version__
from deploydag.cli.commands import history_cmd, rollback_cmd, run_cmd, status_cmd, validate_cmd
from deploydag.cli.utils import console

app = typer.Typer(
    name="deploydag",
    help="deploydag - Promote releases through a DAG of deployment environments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

app.command("run", help="Run the pipeline for a revision")(run_cmd.run)
app.command("rollback", help="Restore the last known-good deploy of an environment")(
    rollback_cmd.rollback
)
app.command("status", help="Show a run and its stage attempts")(status_cmd.status)
app.command("history", help="Show audit entries for an environment")(history_cmd.history)
app.command("validate", help="Check the configuration and print execution waves")(
    validate_cmd.validate
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold blue]deploydag[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Configuration file (default: deploydag.yaml)"
    ),
    audit_dir: Path | None = typer.Option(
        None, "--audit-dir", help="Audit log directory", envvar="DEPLOYDAG_AUDIT_DIR"
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level: debug|info|warning|error",
        envvar="DEPLOYDAG_LOG_LEVEL",
    ),
    log_format: str | None = typer.Option(
        None,
        "--log-format",
        help="Log format: console|json|structured|rich",
        envvar="DEPLOYDAG_LOG_FORMAT",
    ),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Output machine-readable YAML"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """deploydag - run, audit and roll back environment deployments.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}

    output_format = "pretty"
    if json_out:
        output_format = "json"
    elif yaml_out:
        output_format = "yaml"

    ctx.obj.update({
        "config_path": config,
        "audit_dir": audit_dir,
        "log_level": log_level.upper() if log_level else None,
        "log_format": log_format.lower() if log_format else None,
        "output_format": output_format,
    })


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
