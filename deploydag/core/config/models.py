"""Configuration models for the deploydag YAML document.

Document layout::

    settings:
      audit_dir: .deploydag/audit
      artifact_path: force-app
      snapshot_dir: .deploydag/audit/artifacts
      default_timeout: 900
      retry: {max_attempts: 3, delay: 2.0}
      deployer: {type: subprocess}
      logging: {level: INFO, format: structured}
    environments:
      - {id: qa, tier: qa, test_level: local, credential_env: SF_QA_AUTH}
    stages:
      - {name: validate, environment: qa, action: validate}
      - {name: deploy-qa, environment: qa, depends_on: [validate], when: {branches: [develop]}}
"""

from __future__ import annotations

from collections import Counter
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from deploydag.core.domain.dag import StageSpec
from deploydag.core.domain.environment import TestLevel, Tier
from deploydag.core.domain.run import StageAction
from deploydag.core.retry import DEFAULT_MAX_ATTEMPTS, RetryConfig
from deploydag.core.triggers import TriggerCondition

_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RetrySettings(_StrictModel):
    """Retry policy as written in YAML; every field is optional in stage overrides."""

    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    delay: float = Field(2.0, ge=0)
    backoff: float = Field(2.0, ge=1)
    max_delay: float = Field(60.0, ge=0)
    jitter: float = Field(0.1, ge=0, le=1)

    def to_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            delay=self.delay,
            backoff=self.backoff,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


class LoggingSettings(_StrictModel):
    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None


class DeployerSettings(_StrictModel):
    """Which deploy boundary to use and how to call it."""

    type: Literal["subprocess", "mock"] = "subprocess"
    commands: dict[StageAction, list[str]] = Field(default_factory=dict)
    test_level_names: dict[TestLevel, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None


class Settings(_StrictModel):
    audit_dir: str = ".deploydag/audit"
    artifact_path: str = "force-app"
    snapshot_dir: str | None = None
    default_timeout: float | None = Field(900.0, gt=0)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    deployer: DeployerSettings = Field(default_factory=DeployerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class EnvironmentConfig(_StrictModel):
    id: str = Field(pattern=_ID_PATTERN)
    tier: Tier
    test_level: TestLevel = TestLevel.NONE
    approval_required: bool = False
    credential_ref: str | None = None
    credential_env: str | None = None
    description: str = ""

    @model_validator(mode="after")
    def _one_credential_source(self) -> EnvironmentConfig:
        if self.credential_ref is not None and self.credential_env is not None:
            raise ValueError("set either credential_ref or credential_env, not both")
        return self


class StageConfig(_StrictModel):
    name: str = Field(pattern=_ID_PATTERN)
    environment: str
    action: StageAction = StageAction.DEPLOY
    depends_on: list[str] = Field(default_factory=list)
    when: TriggerCondition = Field(default_factory=TriggerCondition)
    retry: RetrySettings | None = None
    timeout: float | None = Field(None, gt=0)
    rollback_on_failure: bool = False

    @field_validator("depends_on")
    @classmethod
    def _no_self_dependency(cls, value: list[str], info: ValidationInfo) -> list[str]:
        name = info.data.get("name")
        if name is not None and name in value:
            raise ValueError(f"stage '{name}' cannot depend on itself")
        return value

    def to_spec(self, default_retry: RetrySettings) -> StageSpec:
        return StageSpec(
            name=self.name,
            environment=self.environment,
            action=self.action,
            deps=frozenset(self.depends_on),
            trigger=self.when.compile(),
            trigger_description=self.when.describe(),
            retry=(self.retry or default_retry).to_config(),
            timeout=self.timeout,
            rollback_on_failure=self.rollback_on_failure,
        )


class DeployDAGConfig(_StrictModel):
    settings: Settings = Field(default_factory=Settings)
    environments: list[EnvironmentConfig] = Field(min_length=1)
    stages: list[StageConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_names(self) -> DeployDAGConfig:
        for kind, names in (
            ("environment", [e.id for e in self.environments]),
            ("stage", [s.name for s in self.stages]),
        ):
            dupes = sorted(n for n, count in Counter(names).items() if count > 1)
            if dupes:
                raise ValueError(f"duplicate {kind} names: {dupes}")
        return self

    def stage_specs(self) -> list[StageSpec]:
        return [stage.to_spec(self.settings.retry) for stage in self.stages]
