"""CLI command modules."""

from . import history_cmd, rollback_cmd, run_cmd, status_cmd, validate_cmd

__all__ = [
    "history_cmd",
    "rollback_cmd",
    "run_cmd",
    "status_cmd",
    "validate_cmd",
]
