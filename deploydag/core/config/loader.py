"""YAML configuration loader for deploydag."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from deploydag.core.config.models import DeployDAGConfig
from deploydag.core.exceptions import ConfigurationError
from deploydag.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "DEPLOYDAG_CONFIG_PATH"
SEARCH_PATHS = ("deploydag.yaml", "deploydag.yml", ".deploydag.yaml")


class ConfigLoader:
    """Loads the deploydag YAML document, substituting ``${VAR}`` placeholders."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self.environ = dict(os.environ) if environ is None else environ

    def load(self, path: str | Path | None = None) -> DeployDAGConfig:
        """Find, read and validate the configuration document.

        Raises
        ------
        ConfigurationError
            If no file is found, the YAML is invalid or validation fails.
        """
        config_path = self.find_config_file(path)
        logger.debug("Loading configuration from {path}", path=config_path)
        try:
            with config_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from e
        except OSError as e:
            raise ConfigurationError(str(config_path), f"cannot read file: {e}") from e

        return self.parse(data, source=str(config_path))

    def parse(self, data: Any, source: str = "<config>") -> DeployDAGConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(source, "top level must be a mapping")
        data = self._substitute_env_vars(data)
        try:
            return DeployDAGConfig.model_validate(data)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(source, problems) from e

    def find_config_file(self, path: str | Path | None = None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigurationError(str(config_path), "configuration file not found")
            return config_path

        if env_path := self.environ.get(CONFIG_PATH_ENV):
            config_path = Path(env_path)
            if config_path.exists():
                return config_path
            raise ConfigurationError(env_path, f"{CONFIG_PATH_ENV} points to a missing file")

        for candidate in SEARCH_PATHS:
            config_path = Path(candidate)
            if config_path.exists():
                return config_path

        raise ConfigurationError(
            "config", f"no configuration file found. Searched for: {', '.join(SEARCH_PATHS)}"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name = match.group(1)
                value = self.environ.get(var_name)
                if value is None:
                    logger.debug(
                        "Environment variable {var} not set, keeping placeholder", var=var_name
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data


def load_config(path: str | Path | None = None) -> DeployDAGConfig:
    """Load configuration using the process environment."""
    return ConfigLoader().load(path)
