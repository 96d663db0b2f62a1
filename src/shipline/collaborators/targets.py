"""Deployment targets.

Four interchangeable strategies share one contract: ``deploy()`` returns
only when the external system reports the new image active, and raises
DeployFailure otherwise.

- DockerHostTarget: replace a container on a single docker host.
- KubernetesTarget: rolling update of a Deployment, then wait for rollout.
- SwarmTarget: ``docker service update``, which blocks until converged.
- CloudRunTarget: managed Cloud Run service revision.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

from shipline.collaborators.command import CommandError, CommandResult, CommandTimeout, Runner
from shipline.observability.logging import get_logger
from shipline.pipeline.errors import DeployFailure

log = get_logger(__name__)

# Extra time given to the kubectl process beyond its own --timeout
_ROLLOUT_GRACE_SECONDS = 15.0

ResourceNameFn = Callable[[str], str]
HostPortFn = Callable[[str, int], int]


class _CommandTarget:
    """Shared plumbing: run a command, map any failure to DeployFailure."""

    name = "command"

    def __init__(self, runner: Runner) -> None:
        self._runner = runner

    async def _run(
        self, argv: Sequence[str], action: str, *, timeout: float | None = None
    ) -> CommandResult:
        try:
            result = await self._runner.run(argv, timeout=timeout)
        except CommandError as e:
            raise DeployFailure(f"{action}: {e}") from e
        if not result.ok:
            raise DeployFailure(f"{action} failed ({result.returncode}): {result.output}")
        return result


class DockerHostTarget(_CommandTarget):
    """Run the image as a named container on the local docker host."""

    name = "docker"

    def __init__(
        self,
        runner: Runner,
        resource_name: ResourceNameFn,
        host_port: HostPortFn | None = None,
        docker: str = "docker",
    ) -> None:
        super().__init__(runner)
        self._resource_name = resource_name
        self._host_port = host_port
        self._docker = docker

    async def deploy(self, image: str, environment: str, port: int, replicas: int) -> str:
        container = self._resource_name(environment)
        host_port = self._host_port(environment, port) if self._host_port else port
        if replicas != 1:
            log.warning("replicas_ignored", target=self.name, replicas=replicas)

        # Removing a container that does not exist is fine
        removed = await self._runner.run([self._docker, "rm", "--force", container])
        if not removed.ok and "no such container" not in removed.output.lower():
            raise DeployFailure(f"cannot remove old container {container}: {removed.output}")

        await self._run(
            [
                self._docker,
                "run",
                "--detach",
                "--name",
                container,
                "--restart",
                "unless-stopped",
                "--publish",
                f"{host_port}:{port}",
                "--env",
                f"APP_ENV={environment}",
                image,
            ],
            f"docker run {container}",
        )

        state = await self._run(
            [self._docker, "inspect", "--format", "{{.State.Running}}", container],
            f"docker inspect {container}",
        )
        if state.stdout.strip() != "true":
            raise DeployFailure(f"container {container} is not running after start")

        log.info("container_started", container=container, image=image, host_port=host_port)
        return f"container {container} running {image}"


class KubernetesTarget(_CommandTarget):
    """Rolling update of an existing Deployment via kubectl."""

    name = "kubernetes"

    def __init__(
        self,
        runner: Runner,
        deployment: ResourceNameFn,
        namespace: ResourceNameFn,
        *,
        container: str | None = None,
        rollout_timeout: float = 300.0,
        kubectl: str = "kubectl",
    ) -> None:
        super().__init__(runner)
        self._deployment = deployment
        self._namespace = namespace
        self._container = container
        self._rollout_timeout = rollout_timeout
        self._kubectl = kubectl

    async def deploy(self, image: str, environment: str, port: int, replicas: int) -> str:
        namespace = self._namespace(environment)
        deployment = self._deployment(environment)
        container = self._container or deployment
        resource = f"deployment/{deployment}"

        await self._run(
            [
                self._kubectl,
                "set",
                "image",
                resource,
                f"{container}={image}",
                "--namespace",
                namespace,
            ],
            f"kubectl set image {resource}",
        )
        await self._run(
            [
                self._kubectl,
                "scale",
                resource,
                f"--replicas={replicas}",
                "--namespace",
                namespace,
            ],
            f"kubectl scale {resource}",
        )
        await self.await_rollout(deployment, self._rollout_timeout, namespace=namespace)

        log.info("rollout_complete", deployment=deployment, namespace=namespace, image=image)
        return f"{resource} in {namespace} rolled out {image}"

    async def await_rollout(self, deployment: str, timeout: float, *, namespace: str) -> None:
        """Wait for the cluster's rollout-complete signal.

        Raises:
            DeployFailure: If the rollout fails or does not finish in time.
        """
        argv = [
            self._kubectl,
            "rollout",
            "status",
            f"deployment/{deployment}",
            "--namespace",
            namespace,
            # kubectl reads 0s as "no timeout"
            f"--timeout={math.ceil(timeout)}s",
        ]
        try:
            result = await self._runner.run(argv, timeout=timeout + _ROLLOUT_GRACE_SECONDS)
        except CommandTimeout as e:
            raise DeployFailure(
                f"rollout of deployment/{deployment} did not complete within {timeout:g}s"
            ) from e
        except CommandError as e:
            raise DeployFailure(f"kubectl rollout status: {e}") from e

        if not result.ok:
            if "timed out" in result.output.lower():
                raise DeployFailure(
                    f"rollout of deployment/{deployment} did not complete within {timeout:g}s"
                )
            raise DeployFailure(f"rollout of deployment/{deployment} failed: {result.output}")


class SwarmTarget(_CommandTarget):
    """Update a docker swarm service in place."""

    name = "swarm"

    def __init__(self, runner: Runner, resource_name: ResourceNameFn, docker: str = "docker") -> None:
        super().__init__(runner)
        self._resource_name = resource_name
        self._docker = docker

    async def deploy(self, image: str, environment: str, port: int, replicas: int) -> str:
        service = self._resource_name(environment)
        await self._run(
            [
                self._docker,
                "service",
                "update",
                "--image",
                image,
                "--replicas",
                str(replicas),
                "--env-add",
                f"APP_ENV={environment}",
                "--with-registry-auth",
                "--detach=false",
                service,
            ],
            f"docker service update {service}",
        )

        current = await self._run(
            [
                self._docker,
                "service",
                "inspect",
                "--format",
                "{{.Spec.TaskTemplate.ContainerSpec.Image}}",
                service,
            ],
            f"docker service inspect {service}",
        )
        # Swarm pins the digest: "repo:tag@sha256:..."
        if current.stdout.strip().split("@", 1)[0] != image:
            raise DeployFailure(
                f"service {service} reports image {current.stdout.strip()!r}, expected {image}"
            )

        log.info("service_updated", service=service, image=image, replicas=replicas)
        return f"service {service} converged on {image}"


class CloudRunTarget(_CommandTarget):
    """Deploy a new Cloud Run revision with gcloud."""

    name = "cloudrun"

    def __init__(
        self,
        runner: Runner,
        resource_name: ResourceNameFn,
        region: str | None = None,
        gcloud: str = "gcloud",
    ) -> None:
        super().__init__(runner)
        self._resource_name = resource_name
        self._region = region
        self._gcloud = gcloud

    def _region_args(self) -> list[str]:
        return ["--region", self._region] if self._region else []

    async def deploy(self, image: str, environment: str, port: int, replicas: int) -> str:
        service = self._resource_name(environment)
        await self._run(
            [
                self._gcloud,
                "run",
                "deploy",
                service,
                "--image",
                image,
                "--port",
                str(port),
                "--min-instances",
                str(replicas),
                "--set-env-vars",
                f"APP_ENV={environment}",
                "--platform",
                "managed",
                *self._region_args(),
                "--quiet",
            ],
            f"gcloud run deploy {service}",
        )

        described = await self._run(
            [
                self._gcloud,
                "run",
                "services",
                "describe",
                service,
                *self._region_args(),
                "--platform",
                "managed",
                "--format",
                "value(spec.template.spec.containers[0].image)",
            ],
            f"gcloud run services describe {service}",
        )
        if described.stdout.strip() != image:
            raise DeployFailure(
                f"service {service} serves {described.stdout.strip()!r}, expected {image}"
            )

        log.info("cloud_run_deployed", service=service, image=image, region=self._region)
        return f"Cloud Run service {service} serving {image}"
