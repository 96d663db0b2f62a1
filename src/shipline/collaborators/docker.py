"""Docker-backed image builder, test runner and registry client."""

from __future__ import annotations

import os
import re
from collections.abc import Sequence
from pathlib import Path  # noqa: TC003 - used at runtime

from shipline.collaborators.base import RegistrySession
from shipline.collaborators.command import CommandError, Runner
from shipline.observability.logging import get_logger
from shipline.pipeline.context import registry_host
from shipline.pipeline.errors import BuildFailure, PushDenied

log = get_logger(__name__)

# Registry responses that mean "you may not do this" rather than a transport fault
_DENIED_MARKERS = ("denied", "unauthorized", "authentication required", "forbidden")


def credential_env_names(credential: str) -> tuple[str, str]:
    """Environment variable names holding a username/password credential.

    Follows the CI binding convention where a credential bound as ``NAME``
    exposes ``NAME_USR`` and ``NAME_PSW``. The reference is upper-cased and
    every character outside [A-Z0-9] becomes an underscore.
    """
    base = re.sub(r"[^A-Z0-9]", "_", credential.upper())
    return f"{base}_USR", f"{base}_PSW"


class DockerImageBuilder:
    """Build images with ``docker build``."""

    def __init__(self, runner: Runner, dockerfile: str = "Dockerfile", docker: str = "docker") -> None:
        self._runner = runner
        self._dockerfile = dockerfile
        self._docker = docker

    async def build(self, source: Path, tag: str) -> str:
        argv = [
            self._docker,
            "build",
            "--file",
            str(source / self._dockerfile),
            "--tag",
            tag,
            str(source),
        ]
        try:
            result = await self._runner.run(argv)
        except CommandError as e:
            raise BuildFailure(str(e)) from e
        if not result.ok:
            raise BuildFailure(f"docker build exited {result.returncode}: {_tail(result.output)}")
        log.info("image_built", image=tag)
        return tag

    async def tag(self, image: str, alias: str) -> str:
        try:
            result = await self._runner.run([self._docker, "tag", image, alias])
        except CommandError as e:
            raise BuildFailure(str(e)) from e
        if not result.ok:
            raise BuildFailure(f"docker tag {image} {alias} failed: {result.output}")
        return alias

    async def remove(self, image: str) -> bool:
        result = await self._runner.run([self._docker, "image", "rm", image])
        if result.ok:
            log.debug("image_removed", image=image)
            return True
        if "no such image" in result.output.lower():
            return False
        raise CommandError(result.argv, f"docker image rm failed: {result.output}")


class DockerTestRunner:
    """Run the test command in a throwaway container of the built image."""

    __test__ = False  # not a pytest test class

    def __init__(self, runner: Runner, docker: str = "docker", timeout: float | None = None) -> None:
        self._runner = runner
        self._docker = docker
        self._timeout = timeout

    async def run_in_container(self, image: str, command: Sequence[str]) -> tuple[int, str]:
        argv = [self._docker, "run", "--rm", image, *command]
        result = await self._runner.run(argv, timeout=self._timeout)
        return result.returncode, result.output


class DockerRegistryClient:
    """Log in to and push to a registry with the docker CLI."""

    def __init__(self, runner: Runner, registry_url: str | None = None, docker: str = "docker") -> None:
        self._runner = runner
        self._registry = registry_host(registry_url)
        self._docker = docker

    async def authenticate(self, credential: str | None) -> RegistrySession:
        if not credential:
            log.info("registry_anonymous", registry=self._registry)
            return RegistrySession(registry=self._registry, anonymous=True)

        user_var, password_var = credential_env_names(credential)
        username = os.environ.get(user_var)
        password = os.environ.get(password_var)
        if not username or not password:
            raise PushDenied(
                f"credential '{credential}' is not bound (expected {user_var} and {password_var})"
            )

        argv = [self._docker, "login", "--username", username, "--password-stdin"]
        if self._registry:
            argv.append(self._registry)
        try:
            result = await self._runner.run(argv, input_data=password)
        except CommandError as e:
            raise PushDenied(str(e)) from e
        if not result.ok:
            raise PushDenied(f"registry login failed: {result.output}")

        log.info("registry_authenticated", registry=self._registry, username=username)
        return RegistrySession(registry=self._registry, username=username)

    async def push(self, image: str, session: RegistrySession) -> None:
        try:
            result = await self._runner.run([self._docker, "push", image])
        except CommandError as e:
            raise PushDenied(str(e)) from e
        if result.ok:
            log.info("image_pushed", image=image)
            return
        output = result.output
        if any(marker in output.lower() for marker in _DENIED_MARKERS):
            raise PushDenied(f"registry denied push of {image}: {_tail(output)}")
        raise PushDenied(f"docker push {image} exited {result.returncode}: {_tail(output)}")

    async def logout(self, session: RegistrySession) -> None:
        if session.anonymous:
            return
        argv = [self._docker, "logout"]
        if session.registry:
            argv.append(session.registry)
        result = await self._runner.run(argv)
        if not result.ok:
            raise CommandError(argv, f"docker logout failed: {result.output}")


def _tail(output: str, lines: int = 20) -> str:
    """Last few lines of tool output, enough to show the error."""
    return "\n".join(output.strip().splitlines()[-lines:])
