"""Engine factory: turns a validated configuration document into a wired engine.

This is the only place where configuration meets runtime objects. The
registry, stage graph, deployer adapter, executor, audit log, artifact store
and rollback coordinator are built here and handed to :class:`PipelineEngine`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from deploydag.adapters.mock_deployer import MockDeployer
from deploydag.adapters.subprocess_deployer import SubprocessDeployer
from deploydag.core.audit import AuditLog
from deploydag.core.config.models import DeployDAGConfig, DeployerSettings
from deploydag.core.domain.dag import StageGraph, StageGraphError
from deploydag.core.engine import PipelineEngine
from deploydag.core.exceptions import ConfigurationError
from deploydag.core.executor import CommandExecutor
from deploydag.core.logging import get_logger
from deploydag.core.ports.deployer import DeployerPort
from deploydag.core.registry import EnvironmentRegistry
from deploydag.core.rollback import RollbackCoordinator
from deploydag.core.utils.artifacts import ArtifactStore

logger = get_logger(__name__)

AUDIT_DIR_ENV = "DEPLOYDAG_AUDIT_DIR"
SNAPSHOT_SUBDIR = "artifacts"


@dataclass(slots=True)
class EngineComponents:
    """Everything a CLI command may need from one configuration."""

    config: DeployDAGConfig
    registry: EnvironmentRegistry
    graph: StageGraph
    deployer: DeployerPort
    executor: CommandExecutor
    audit_log: AuditLog
    artifact_store: ArtifactStore
    rollback: RollbackCoordinator
    engine: PipelineEngine


class EngineFactory:
    """Builds engines from configuration.

    Examples
    --------
    Example usage::

        config = ConfigLoader().load("deploydag.yaml")
        components = EngineFactory().create(config)
        run = await components.engine.run(TriggerEvent(branch="develop", revision="abc123"))
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self.environ = os.environ if environ is None else environ

    def create(
        self,
        config: DeployDAGConfig,
        *,
        audit_dir: str | Path | None = None,
        deployer: DeployerPort | None = None,
    ) -> EngineComponents:
        """Wire an engine for ``config``.

        Parameters
        ----------
        config : DeployDAGConfig
            Validated configuration document
        audit_dir : str | Path | None, optional
            Overrides ``DEPLOYDAG_AUDIT_DIR`` and ``settings.audit_dir``
        deployer : DeployerPort | None, optional
            Use this adapter instead of the one named in ``settings.deployer``

        Raises
        ------
        ConfigurationError
            If credentials are missing, the stage graph is invalid or a stage
            targets an unknown environment.
        """
        settings = config.settings
        registry = EnvironmentRegistry.from_config(config.environments, self.environ)
        graph = self.create_graph(config)
        deployer = deployer or self.create_deployer(settings.deployer)
        executor = CommandExecutor(deployer, default_timeout=settings.default_timeout)
        resolved_audit_dir = self.resolve_audit_dir(config, audit_dir)
        audit_log = AuditLog(resolved_audit_dir)
        artifact_store = ArtifactStore(
            settings.snapshot_dir or resolved_audit_dir / SNAPSHOT_SUBDIR
        )
        rollback = RollbackCoordinator(
            registry,
            executor,
            audit_log,
            default_timeout=settings.default_timeout,
            artifact_store=artifact_store,
        )
        engine = PipelineEngine(
            graph,
            registry,
            executor,
            audit_log,
            rollback=rollback,
            default_timeout=settings.default_timeout,
            artifact_path=settings.artifact_path,
            artifact_store=artifact_store,
        )
        engine.validate()

        logger.debug(
            "Engine ready: {envs} environments, {stages} stages, deployer={kind}",
            envs=len(registry),
            stages=len(graph),
            kind=type(deployer).__name__,
        )
        return EngineComponents(
            config=config,
            registry=registry,
            graph=graph,
            deployer=deployer,
            executor=executor,
            audit_log=audit_log,
            artifact_store=artifact_store,
            rollback=rollback,
            engine=engine,
        )

    @staticmethod
    def create_graph(config: DeployDAGConfig) -> StageGraph:
        try:
            return StageGraph(config.stage_specs())
        except StageGraphError as e:
            raise ConfigurationError("stages", str(e)) from e

    @staticmethod
    def create_deployer(settings: DeployerSettings) -> DeployerPort:
        if settings.type == "mock":
            logger.warning("Using the mock deployer; no environment will be changed")
            return MockDeployer()
        return SubprocessDeployer(
            commands=settings.commands,
            test_level_names=settings.test_level_names,
            env=settings.env or None,
            cwd=settings.cwd,
        )

    def resolve_audit_dir(self, config: DeployDAGConfig, override: str | Path | None) -> Path:
        if override is not None:
            return Path(override)
        if env_dir := self.environ.get(AUDIT_DIR_ENV):
            return Path(env_dir)
        return Path(config.settings.audit_dir)
