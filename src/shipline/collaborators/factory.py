"""Factory for the collaborators a pipeline run needs.

The deployment strategy is resolved here, once, from configuration; the
orchestrator never branches on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from shipline.collaborators.command import CommandRunner, Runner
from shipline.collaborators.docker import (
    DockerImageBuilder,
    DockerRegistryClient,
    DockerTestRunner,
)
from shipline.collaborators.git import GitCheckout
from shipline.collaborators.probe import HttpLivenessProber
from shipline.collaborators.targets import (
    CloudRunTarget,
    DockerHostTarget,
    KubernetesTarget,
    SwarmTarget,
)
from shipline.collaborators.trivy import TrivyScanner
from shipline.observability.logging import get_logger
from shipline.pipeline.config import ConfigError, DeployStrategy

if TYPE_CHECKING:
    from shipline.collaborators.base import (
        DeploymentTarget,
        ImageBuilder,
        ImageScanner,
        LivenessProber,
        RegistryClient,
        SourceCheckout,
        TestRunner,
    )
    from shipline.pipeline.config import PipelineConfig

log = get_logger(__name__)

# Executables each strategy needs on PATH, on top of git and docker
STRATEGY_TOOLS: dict[DeployStrategy, tuple[str, ...]] = {
    DeployStrategy.DOCKER: (),
    DeployStrategy.KUBERNETES: ("kubectl",),
    DeployStrategy.SWARM: (),
    DeployStrategy.CLOUDRUN: ("gcloud",),
}


@dataclass
class Collaborators:
    """Concrete implementations of every external system a run touches."""

    checkout: SourceCheckout
    builder: ImageBuilder
    tests: TestRunner
    scanner: ImageScanner
    registry: RegistryClient
    target: DeploymentTarget
    prober: LivenessProber


def required_tools(config: PipelineConfig) -> list[str]:
    """Executables the configured pipeline will invoke."""
    tools = ["git", "docker"]
    if config.scan.enabled:
        tools.append("trivy")
    tools.extend(STRATEGY_TOOLS[config.deploy.strategy])
    return tools


def create_deployment_target(config: PipelineConfig, runner: Runner) -> DeploymentTarget:
    """Create the deployment target selected by ``deploy.strategy``.

    Args:
        config: Pipeline configuration.
        runner: Command runner the target will use.

    Returns:
        DeploymentTarget for the configured strategy.

    Raises:
        ConfigError: If the strategy is unknown or misconfigured.
    """
    deploy = config.deploy
    service = config.app.service_name
    resource_name = partial(deploy.resource_name, service)

    match deploy.strategy:
        case DeployStrategy.DOCKER:
            target: DeploymentTarget = DockerHostTarget(
                runner, resource_name, host_port=deploy.host_port
            )
        case DeployStrategy.KUBERNETES:
            target = KubernetesTarget(
                runner,
                deployment=partial(deploy.deployment_name, service),
                namespace=deploy.namespace,
                container=service,
                rollout_timeout=deploy.rollout_timeout,
            )
        case DeployStrategy.SWARM:
            target = SwarmTarget(runner, resource_name)
        case DeployStrategy.CLOUDRUN:
            if not deploy.region:
                raise ConfigError("deploy.region is required for the cloudrun strategy")
            target = CloudRunTarget(runner, resource_name, region=deploy.region)
        case _:
            raise ConfigError(f"unknown deploy strategy '{deploy.strategy}'")

    log.debug("deployment_target_created", strategy=str(deploy.strategy))
    return target


def create_collaborators(
    config: PipelineConfig,
    runner: Runner | None = None,
    prober: LivenessProber | None = None,
) -> Collaborators:
    """Wire up command-backed collaborators for a pipeline configuration."""
    runner = runner or CommandRunner()
    workdir = Path(config.source.workdir) if config.source.workdir else None

    return Collaborators(
        checkout=GitCheckout(runner, repository=config.source.repository, workdir=workdir),
        builder=DockerImageBuilder(runner, dockerfile=config.image.dockerfile),
        tests=DockerTestRunner(runner),
        scanner=TrivyScanner(runner, severity=config.scan.severity),
        registry=DockerRegistryClient(runner, registry_url=config.image.registry),
        target=create_deployment_target(config, runner),
        prober=prober or HttpLivenessProber(timeout=config.verify.timeout),
    )
