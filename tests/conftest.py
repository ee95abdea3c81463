"""Configuration file for pytest containing shared fixtures.

This module provides fixtures that can be used across multiple test files:
- environments / registry: a qa, uat and prod environment set
- deployer / executor / audit_log: in-memory collaborators for the engine
- fast_retry: a retry policy without delays
- artifact: a small artifact directory on disk
- log_capture: loguru records emitted during a test
"""

from collections.abc import Iterator
from pathlib import Path

import pytest
from loguru import logger

from deploydag.adapters.mock_deployer import MockDeployer
from deploydag.core.audit import AuditLog
from deploydag.core.domain.environment import Environment, TestLevel, Tier
from deploydag.core.executor import CommandExecutor
from deploydag.core.registry import EnvironmentRegistry
from deploydag.core.retry import RetryConfig


@pytest.fixture
def environments() -> list[Environment]:
    return [
        Environment("qa", Tier.QA, "qa-org", TestLevel.LOCAL),
        Environment("uat", Tier.UAT, "uat-org", TestLevel.LOCAL),
        Environment("prod", Tier.PROD, "prod-org", TestLevel.FULL, approval_required=True),
    ]


@pytest.fixture
def registry(environments: list[Environment]) -> EnvironmentRegistry:
    return EnvironmentRegistry(environments)


@pytest.fixture
def deployer() -> MockDeployer:
    return MockDeployer()


@pytest.fixture
def executor(deployer: MockDeployer) -> CommandExecutor:
    return CommandExecutor(deployer)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, delay=0.0, jitter=0.0)


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    """An artifact directory with one metadata file."""
    source = tmp_path / "force-app"
    (source / "classes").mkdir(parents=True)
    (source / "classes" / "Invoice.cls").write_text("public class Invoice {}")
    return source


@pytest.fixture
def log_capture() -> Iterator[list[dict]]:
    captured: list[dict] = []

    def sink(message):
        record = message.record
        captured.append({
            "level": record["level"].name,
            "message": record["message"],
            "extra": dict(record["extra"]),
        })

    handler_id = logger.add(sink, level="DEBUG", format="{message}")
    yield captured
    logger.remove(handler_id)
