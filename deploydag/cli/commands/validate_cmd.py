"""Configuration validation command for the deploydag CLI."""

import typer
from rich.markup import escape

from deploydag.cli.utils import build_components, console, output_format, print_output


def validate(ctx: typer.Context) -> None:
    """Validate the configuration and print the execution waves.

    This command checks:
    - YAML syntax and the document schema
    - Credential reference variables for every environment
    - Stage dependencies, cycles and target environments

    Exit code 2 on any error.
    """
    components = build_components(ctx)
    waves = components.engine.validate()

    if output_format(ctx) != "pretty":
        print_output(
            {
                "environments": components.registry.ids(),
                "stages": [stage.name for stage in components.graph],
                "waves": waves,
            },
            ctx,
        )
        return

    console.print("[green]✓ Configuration is valid[/green]")
    console.print(f"  Environments: {', '.join(components.registry.ids())}")
    console.print("[bold]Execution Waves:[/bold]")
    for wave_num, wave in enumerate(waves, start=1):
        console.print(f"\n[yellow]Wave {wave_num}:[/yellow]")
        for name in wave:
            stage = components.graph.stages[name]
            env = components.registry.resolve(stage.environment)
            gate = " (approval required)" if env.approval_required else ""
            console.print(
                f"  • {name} ({stage.action.value} -> {env.id}) "
                f"when {escape(stage.trigger_description)}{gate}"
            )
