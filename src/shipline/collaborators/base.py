"""Protocols for the external systems a pipeline run drives.

The orchestrator only ever talks to these interfaces. Concrete
implementations wrap command-line tools (git, docker, trivy, kubectl,
gcloud) or HTTP endpoints.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RegistrySession:
    """Authenticated registry session.

    Attributes:
        registry: Registry host the session is valid for (None = default registry).
        username: Account the session belongs to, if any.
        anonymous: True when no credential was supplied and no login happened.
    """

    registry: str | None
    username: str | None = None
    anonymous: bool = False


class SourceCheckout(Protocol):
    """Produces a workspace containing the requested source revision."""

    async def checkout(self, source_dir: Path, revision: str | None) -> Path:
        """Return the workspace directory. Raises CheckoutFailure."""
        ...

    async def release(self, workspace: Path) -> None:
        """Remove a workspace created by checkout(); no-op for borrowed ones."""
        ...


class ImageBuilder(Protocol):
    """Builds, tags and removes container images."""

    async def build(self, source: Path, tag: str) -> str:
        """Build an image from ``source`` and return its reference. Raises BuildFailure."""
        ...

    async def tag(self, image: str, alias: str) -> str:
        """Tag ``image`` with ``alias`` and return the alias reference."""
        ...

    async def remove(self, image: str) -> bool:
        """Remove a local image. Returns False if it did not exist."""
        ...


class TestRunner(Protocol):
    """Runs a command inside a built image."""

    __test__ = False  # not a pytest test class

    async def run_in_container(self, image: str, command: Sequence[str]) -> tuple[int, str]:
        """Return (exit_code, output). Success iff exit_code == 0."""
        ...


class ImageScanner(Protocol):
    """Scans an image for vulnerabilities."""

    async def scan(self, image: str) -> tuple[int, str]:
        """Return (exit_code, output). Success iff exit_code == 0."""
        ...


class RegistryClient(Protocol):
    """Authenticates to and pushes images into a registry."""

    async def authenticate(self, credential: str | None) -> RegistrySession:
        """Open a session using an opaque credential reference. Raises PushDenied."""
        ...

    async def push(self, image: str, session: RegistrySession) -> None:
        """Push an image. Raises PushDenied."""
        ...

    async def logout(self, session: RegistrySession) -> None:
        """Discard the session's stored credentials."""
        ...


@runtime_checkable
class DeploymentTarget(Protocol):
    """Places an image into service for an environment.

    deploy() returns only once the external system reports the new version
    active and raises DeployFailure otherwise.
    """

    name: str

    async def deploy(self, image: str, environment: str, port: int, replicas: int) -> str:
        """Deploy and return a short description of what is now running."""
        ...


class LivenessProber(Protocol):
    """Checks whether a deployed endpoint answers."""

    async def probe(self, url: str) -> bool:
        """Return True if the endpoint is reachable."""
        ...
