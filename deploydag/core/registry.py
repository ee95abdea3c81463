"""Environment registry: the process-wide set of deployment targets."""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

from deploydag.core.domain.environment import Environment
from deploydag.core.exceptions import ConfigurationError, DuplicateEnvironment, UnknownEnvironment
from deploydag.core.logging import get_logger

if TYPE_CHECKING:
    from deploydag.core.config.models import EnvironmentConfig

logger = get_logger(__name__)


def default_credential_env(environment_id: str) -> str:
    """Name of the variable holding an environment's credential reference.

    >>> default_credential_env("qa")
    'DEPLOYDAG_QA_CREDENTIAL_REF'
    >>> default_credential_env("uat-eu")
    'DEPLOYDAG_UAT_EU_CREDENTIAL_REF'
    """
    return f"DEPLOYDAG_{environment_id.upper().replace('-', '_')}_CREDENTIAL_REF"


class EnvironmentRegistry:
    """Registry of named environments.

    Read-mostly: environments are registered at startup and the registry is
    frozen before a run starts. Nothing mutates it while a run is in flight.
    """

    def __init__(self, environments: list[Environment] | None = None) -> None:
        self._environments: dict[str, Environment] = {}
        self._frozen = False
        for env in environments or []:
            self.register(env)

    @classmethod
    def from_config(
        cls,
        environments: list[EnvironmentConfig],
        environ: Mapping[str, str] | None = None,
    ) -> EnvironmentRegistry:
        """Build a registry from configuration entries.

        Raises
        ------
        ConfigurationError
            If a credential reference variable is unset or empty.
        DuplicateEnvironment
            If two entries share an id.
        """
        environ = os.environ if environ is None else environ
        registry = cls()
        for entry in environments:
            credential_ref = entry.credential_ref
            if credential_ref is None:
                var_name = entry.credential_env or default_credential_env(entry.id)
                credential_ref = environ.get(var_name)
                if not credential_ref:
                    raise ConfigurationError(
                        f"environments.{entry.id}",
                        f"credential reference variable '{var_name}' is not set",
                    )
            registry.register(
                Environment(
                    id=entry.id,
                    tier=entry.tier,
                    credential_ref=credential_ref,
                    test_level=entry.test_level,
                    approval_required=entry.approval_required,
                    description=entry.description,
                )
            )
        return registry

    def register(self, env: Environment) -> None:
        """Register an environment.

        Raises
        ------
        DuplicateEnvironment
            If the id is already registered.
        ConfigurationError
            If the registry has been frozen for a run.
        """
        if self._frozen:
            raise ConfigurationError("registry", f"cannot register '{env.id}' after freeze")
        if env.id in self._environments:
            raise DuplicateEnvironment(env.id)
        self._environments[env.id] = env
        logger.debug("Registered environment {env}", env=env)

    def resolve(self, environment_id: str) -> Environment:
        """Look up an environment by id.

        Raises
        ------
        UnknownEnvironment
            If no environment with that id is registered.
        """
        try:
            return self._environments[environment_id]
        except KeyError:
            raise UnknownEnvironment(environment_id, list(self._environments)) from None

    def freeze(self) -> None:
        """Reject further registrations."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def ids(self) -> list[str]:
        return list(self._environments)

    def __contains__(self, environment_id: object) -> bool:
        return environment_id in self._environments

    def __iter__(self) -> Iterator[Environment]:
        return iter(self._environments.values())

    def __len__(self) -> int:
        return len(self._environments)
