"""Deployer adapters."""

from deploydag.adapters.mock_deployer import MockDeployer, MockResponse
from deploydag.adapters.subprocess_deployer import SubprocessDeployer

__all__ = ["MockDeployer", "MockResponse", "SubprocessDeployer"]
