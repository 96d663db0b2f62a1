"""External collaborators: git, docker, trivy, deploy targets, HTTP probe."""

from shipline.collaborators.base import (
    DeploymentTarget,
    ImageBuilder,
    ImageScanner,
    LivenessProber,
    RegistryClient,
    RegistrySession,
    SourceCheckout,
    TestRunner,
)
from shipline.collaborators.command import (
    CommandError,
    CommandNotFound,
    CommandResult,
    CommandRunner,
    CommandTimeout,
)
from shipline.collaborators.factory import (
    Collaborators,
    create_collaborators,
    create_deployment_target,
    required_tools,
)

__all__ = [
    "Collaborators",
    "CommandError",
    "CommandNotFound",
    "CommandResult",
    "CommandRunner",
    "CommandTimeout",
    "DeploymentTarget",
    "ImageBuilder",
    "ImageScanner",
    "LivenessProber",
    "RegistryClient",
    "RegistrySession",
    "SourceCheckout",
    "TestRunner",
    "create_collaborators",
    "create_deployment_target",
    "required_tools",
]
