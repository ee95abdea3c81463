"""Core exception hierarchy for deploydag.

All deploydag exceptions inherit from DeployDAGError so callers (the CLI in
particular) can map them onto exit codes in one place.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class DeployDAGError(Exception):
    """Base exception for all deploydag errors."""

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(DeployDAGError):
    """Raised when configuration is invalid or missing.

    Fatal: aborts before any run starts.

    Examples
    --------
    Example usage::

        raise ConfigurationError("stages", "cycle detected: a -> b -> a")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


# ============================================================================
# Registry Errors
# ============================================================================


class UnknownEnvironment(DeployDAGError):
    """Raised when an environment id is not registered."""

    def __init__(self, environment_id: str, available: list[str] | None = None) -> None:
        msg = f"Environment '{environment_id}' not found"
        if available:
            msg += f". Available: {', '.join(sorted(available))}"
        super().__init__(msg)
        self.environment_id = environment_id
        self.available = available


class DuplicateEnvironment(DeployDAGError):
    """Raised when registering an environment id that already exists."""

    def __init__(self, environment_id: str) -> None:
        super().__init__(f"Environment '{environment_id}' is already registered")
        self.environment_id = environment_id


# ============================================================================
# Execution Errors
# ============================================================================


class InfrastructureFailure(DeployDAGError):
    """Transient failure of the deploy boundary (unreachable, malformed output).

    Retried per the stage's retry policy.
    """

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(f"Infrastructure failure in stage '{stage}': {reason}")
        self.stage = stage
        self.reason = reason


class StageTimeout(InfrastructureFailure):
    """The deploy command exceeded its wall-clock timeout or was cancelled."""

    def __init__(self, stage: str, timeout: float | None, reason: str = "") -> None:
        self.timeout = timeout
        super().__init__(stage, reason or f"timed out after {timeout}s")


class ApplicationFailure(DeployDAGError):
    """Deterministic failure reported by the deploy command. Never retried."""

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(f"Application failure in stage '{stage}': {reason}")
        self.stage = stage
        self.reason = reason


class InvalidTransitionError(DeployDAGError):
    """Raised when a stage state transition is not allowed."""


# ============================================================================
# Rollback & Audit Errors
# ============================================================================


class NoKnownGoodState(DeployDAGError):
    """Raised when rollback finds no prior successful deploy for an environment."""

    def __init__(self, environment_id: str) -> None:
        super().__init__(
            f"No known-good deployment recorded for environment '{environment_id}'"
        )
        self.environment_id = environment_id


class AuditLogError(DeployDAGError):
    """Raised when the persisted audit log cannot be read."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Audit log error at '{path}': {reason}")
        self.path = path
        self.reason = reason


__all__ = [
    "DeployDAGError",
    "ConfigurationError",
    "UnknownEnvironment",
    "DuplicateEnvironment",
    "InfrastructureFailure",
    "StageTimeout",
    "ApplicationFailure",
    "InvalidTransitionError",
    "NoKnownGoodState",
    "AuditLogError",
]
