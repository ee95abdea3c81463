"""CLI helper utilities for deploydag commands."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

import typer
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape

from deploydag.core.audit import AuditLog
from deploydag.core.config.loader import ConfigLoader
from deploydag.core.config.models import DeployDAGConfig, LoggingSettings
from deploydag.core.engine_factory import AUDIT_DIR_ENV, EngineComponents, EngineFactory
from deploydag.core.exceptions import AuditLogError, ConfigurationError
from deploydag.core.logging import configure_logging

# Exit codes shared by all commands
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_NO_KNOWN_GOOD = 3


class ContextProtocol(Protocol):
    """Protocol for common interface between Click and Typer contexts."""

    @property
    def obj(self) -> dict[str, Any] | None: ...


console = Console()
err_console = Console(stderr=True)


def _options(ctx: ContextProtocol | None) -> dict[str, Any]:
    options = getattr(ctx, "obj", None)
    return options if isinstance(options, dict) else {}


def output_format(ctx: ContextProtocol | None) -> str:
    return str(_options(ctx).get("output_format", "pretty"))


def print_output(data: Any, ctx: ContextProtocol | None = None) -> None:
    """Print ``data`` according to ``ctx.obj['output_format']``.

    Machine formats go straight to stdout; anything else is handed to rich.
    """
    fmt = output_format(ctx)
    if fmt == "json":
        typer.echo(json.dumps(data, default=str, indent=2))
    elif fmt == "yaml":
        typer.echo(yaml.safe_dump(data, sort_keys=False))
    elif isinstance(data, (str, int, float)):
        typer.echo(str(data))
    else:
        console.print(data)


def fail(message: str, code: int) -> typer.Exit:
    """Print an error and return the exit to raise."""
    err_console.print(f"[red]✗ {escape(message)}[/red]", soft_wrap=True)
    return typer.Exit(code)


def load_config(ctx: ContextProtocol | None) -> DeployDAGConfig:
    """Load the configuration and apply its logging settings.

    Logging options given on the command line win over the document.
    """
    options = _options(ctx)
    config = ConfigLoader().load(options.get("config_path"))
    overrides = {
        key: options[option]
        for key, option in (("level", "log_level"), ("format", "log_format"))
        if options.get(option)
    }
    try:
        logging_settings = LoggingSettings.model_validate(
            {**config.settings.logging.model_dump(), **overrides}
        )
    except PydanticValidationError as e:
        raise ConfigurationError("logging", str(e.errors()[0]["msg"])) from e
    configure_logging(
        level=logging_settings.level,
        format=logging_settings.format,
        output_file=logging_settings.output_file,
    )
    return config


def build_components(ctx: ContextProtocol | None) -> EngineComponents:
    """Load configuration and wire the engine, mapping problems to exit code 2."""
    try:
        config = load_config(ctx)
        return EngineFactory().create(config, audit_dir=_options(ctx).get("audit_dir"))
    except (ConfigurationError, AuditLogError) as e:
        raise fail(str(e), EXIT_CONFIG_ERROR) from e


def open_audit_log(ctx: ContextProtocol | None) -> AuditLog:
    """Open the audit log without wiring an engine.

    ``--audit-dir`` and ``DEPLOYDAG_AUDIT_DIR`` make the configuration file optional.
    """
    audit_dir = _options(ctx).get("audit_dir") or os.getenv(AUDIT_DIR_ENV)
    try:
        if audit_dir is None:
            audit_dir = load_config(ctx).settings.audit_dir
        return AuditLog(Path(audit_dir))
    except (ConfigurationError, AuditLogError) as e:
        raise fail(str(e), EXIT_CONFIG_ERROR) from e
