"""Port interfaces for external collaborators."""

from deploydag.core.ports.deployer import DeployCommand, DeployerOutput, DeployerPort

__all__ = ["DeployCommand", "DeployerOutput", "DeployerPort"]
