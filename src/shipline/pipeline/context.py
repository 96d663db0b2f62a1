"""Per-run pipeline context.

A PipelineContext is built once at the start of a run from the branch,
build counter and project configuration, then handed unchanged to every
stage. Nothing in a run mutates it.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from shipline.pipeline.config import PipelineConfig

PRODUCTION_BRANCH = "main"


class Environment(StrEnum):
    """Deployment environment. There is no third value."""

    PRODUCTION = "production"
    STAGING = "staging"


def resolve_environment(branch: str) -> Environment:
    """Map a branch name to its deployment environment.

    Only ``main`` deploys to production; every other branch name,
    including the empty string, maps to staging.
    """
    return Environment.PRODUCTION if branch == PRODUCTION_BRANCH else Environment.STAGING


def derive_tag(build_number: int) -> str:
    """Derive the image tag from the build counter.

    Raises:
        ValueError: If the counter is not a positive integer.
    """
    if isinstance(build_number, bool) or not isinstance(build_number, int):
        raise ValueError(f"build number must be an integer, got {build_number!r}")
    if build_number < 1:
        raise ValueError(f"build number must be positive, got {build_number}")
    return f"build-{build_number}"


def registry_host(registry_url: str | None) -> str | None:
    """Strip scheme and path noise from a registry URL.

    ``https://registry.example.com/`` becomes ``registry.example.com``.
    Docker Hub's legacy ``index.docker.io/v1/`` endpoint maps to ``docker.io``.
    """
    if not registry_url:
        return None
    raw = registry_url.strip()
    parts = urlsplit(raw if "://" in raw else f"//{raw}")
    host = parts.netloc or parts.path.split("/", 1)[0]
    if host in ("index.docker.io", "registry-1.docker.io"):
        return "docker.io"
    return host or None


class PipelineContext(BaseModel):
    """Immutable configuration bag for one pipeline run."""

    model_config = ConfigDict(frozen=True)

    image_name: str = Field(min_length=1)
    image_tag: str = Field(min_length=1)
    registry_url: str | None = None
    registry_credential: str | None = None
    target_environment: Environment
    app_port: int = Field(ge=1, le=65535)
    service_name: str = Field(min_length=1)
    branch: str
    build_number: int = Field(ge=1)
    revision: str | None = None
    change_request: bool = False
    source_dir: Path = Path()

    @property
    def image_repository(self) -> str:
        """Image repository, qualified with the registry host when one is set."""
        host = registry_host(self.registry_url)
        if host is None or self.image_name.startswith(f"{host}/"):
            return self.image_name
        return f"{host}/{self.image_name}"

    @property
    def image_reference(self) -> str:
        """Full image reference for this run (repository:tag)."""
        return f"{self.image_repository}:{self.image_tag}"

    @classmethod
    def create(
        cls,
        config: PipelineConfig,
        *,
        branch: str,
        build_number: int,
        revision: str | None = None,
        change_request: bool = False,
        source_dir: Path | None = None,
    ) -> PipelineContext:
        """Build the context for one run.

        Args:
            config: Loaded project configuration.
            branch: Branch being built. Selects the target environment.
            build_number: Monotonic build counter. Fixes the image tag.
            revision: Source revision to check out, if pinned.
            change_request: True when the run was triggered by a pull or
                merge request rather than a branch build.
            source_dir: Workspace containing the source.

        Returns:
            Frozen PipelineContext.
        """
        return cls(
            image_name=config.image.name,
            image_tag=derive_tag(build_number),
            registry_url=config.image.registry,
            registry_credential=config.image.credential,
            target_environment=resolve_environment(branch),
            app_port=config.app.port,
            service_name=config.app.service_name,
            branch=branch,
            build_number=build_number,
            revision=revision,
            change_request=change_request,
            source_dir=source_dir or Path(),
        )
