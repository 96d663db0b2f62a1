"""Stage definitions and the actions behind them.

A Stage pairs a name with an async action and an optional skip condition.
StageActions binds the actions to a set of collaborators; default_stages()
arranges them in the fixed pipeline order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shipline.observability.logging import get_logger
from shipline.pipeline.errors import CleanupFailure, ScanFailure, TestFailure, VerificationFailure
from shipline.pipeline.retry import SleepFn, retry_fixed

if TYPE_CHECKING:
    from pathlib import Path

    from shipline.collaborators.base import RegistrySession
    from shipline.collaborators.factory import Collaborators
    from shipline.pipeline.config import PipelineConfig
    from shipline.pipeline.context import PipelineContext

log = get_logger(__name__)

STAGE_ORDER = ("checkout", "build", "test", "scan", "push", "deploy", "verify")
CLEANUP_STAGE = "cleanup"

# Fixed by contract; only the delay between attempts is configurable
VERIFY_ATTEMPTS = 3


@dataclass
class RunArtifacts:
    """Things produced by earlier stages of one run and consumed by later ones.

    Created fresh for every run and discarded afterwards.
    """

    workspace: Path | None = None
    image: str | None = None
    aliases: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    session: RegistrySession | None = None
    deployment: str | None = None
    verification_attempts: int = 0


StageAction = Callable[["PipelineContext", RunArtifacts], Awaitable[str | None]]
SkipCondition = Callable[["PipelineContext"], bool]


@dataclass(frozen=True)
class Stage:
    """One named unit of work in the pipeline sequence.

    Attributes:
        name: Stage name, unique within a pipeline.
        action: Async callable; returns a short detail string or None.
        required: If True, failure aborts every later stage except cleanup.
        skip_condition: Predicate over the context; when it holds the stage
            is reported as skipped and its action is never called.
    """

    name: str
    action: StageAction
    required: bool = True
    skip_condition: SkipCondition | None = None

    def should_skip(self, context: PipelineContext) -> bool:
        return self.skip_condition is not None and self.skip_condition(context)


def is_change_request(context: PipelineContext) -> bool:
    """Skip condition for stages that must not run for pull/merge requests."""
    return context.change_request


class StageActions:
    """Stage actions bound to concrete collaborators.

    Args:
        collaborators: External systems used by the actions.
        config: Pipeline configuration.
        sleep: Sleep used between verification attempts.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        config: PipelineConfig,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._c = collaborators
        self._config = config
        self._sleep = sleep

    async def checkout(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        artifacts.workspace = await self._c.checkout.checkout(context.source_dir, context.revision)
        return f"workspace {artifacts.workspace}"

    async def build(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        if artifacts.workspace is None:
            raise RuntimeError("build requires a checked-out workspace")
        image = await self._c.builder.build(artifacts.workspace, context.image_reference)
        artifacts.image = image
        if self._config.image.push_latest:
            alias = await self._c.builder.tag(image, f"{context.image_repository}:latest")
            artifacts.aliases.append(alias)
        return image

    async def test(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        image = _require_image(artifacts)
        command = self._config.app.test_command
        exit_code, output = await self._c.tests.run_in_container(image, command)
        if exit_code != 0:
            raise TestFailure(
                f"'{' '.join(command)}' exited {exit_code}", exit_code=exit_code, output=output
            )
        return f"'{' '.join(command)}' passed"

    async def scan(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        image = _require_image(artifacts)
        exit_code, output = await self._c.scanner.scan(image)
        if exit_code != 0:
            raise ScanFailure(f"{self._config.scan.severity} findings in {image}:\n{output}")
        return f"no {self._config.scan.severity} findings"

    async def push(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        image = _require_image(artifacts)
        artifacts.session = await self._c.registry.authenticate(context.registry_credential)
        for reference in (image, *artifacts.aliases):
            await self._c.registry.push(reference, artifacts.session)
            artifacts.pushed.append(reference)
        return f"pushed {', '.join(artifacts.pushed)}"

    async def deploy(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        image = _require_image(artifacts)
        artifacts.deployment = await self._c.target.deploy(
            image,
            str(context.target_environment),
            context.app_port,
            self._config.deploy.replicas,
        )
        return artifacts.deployment

    async def verify(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        url = self._config.verify_url(str(context.target_environment), context.app_port)

        async def attempt() -> bool:
            artifacts.verification_attempts += 1
            return await self._c.prober.probe(url)

        try:
            outcome = await retry_fixed(
                attempt,
                attempts=VERIFY_ATTEMPTS,
                delay=self._config.verify.delay,
                sleep=self._sleep,
            )
        except Exception as e:
            raise VerificationFailure(
                url, artifacts.verification_attempts, reason=str(e) or type(e).__name__
            ) from e

        if not outcome.succeeded:
            raise VerificationFailure(url, outcome.attempts)
        return f"{url} reachable on attempt {outcome.attempts}"

    async def cleanup(self, context: PipelineContext, artifacts: RunArtifacts) -> str:
        """Release everything the run created. Attempts every step before failing."""
        problems: list[str] = []
        removed: list[str] = []

        if artifacts.session is not None:
            try:
                await self._c.registry.logout(artifacts.session)
            except Exception as e:
                problems.append(f"logout: {e}")

        for reference in (*artifacts.aliases, *([artifacts.image] if artifacts.image else [])):
            try:
                if await self._c.builder.remove(reference):
                    removed.append(reference)
            except Exception as e:
                problems.append(f"remove {reference}: {e}")

        if artifacts.workspace is not None:
            try:
                await self._c.checkout.release(artifacts.workspace)
            except Exception as e:
                problems.append(f"release workspace: {e}")

        if problems:
            raise CleanupFailure("; ".join(problems))
        return f"removed {len(removed)} local image(s)"


def _require_image(artifacts: RunArtifacts) -> str:
    if artifacts.image is None:
        raise RuntimeError("no image was built in this run")
    return artifacts.image


def default_stages(actions: StageActions, config: PipelineConfig) -> list[Stage]:
    """The pipeline's stages in their fixed order, cleanup excluded.

    push, deploy and verify are skipped for change-request runs. test is
    skipped when no test command is configured and scan when scanning is
    disabled.
    """
    return [
        Stage("checkout", actions.checkout),
        Stage("build", actions.build),
        Stage("test", actions.test, skip_condition=lambda _: not config.app.test_command),
        Stage("scan", actions.scan, skip_condition=lambda _: not config.scan.enabled),
        Stage("push", actions.push, skip_condition=is_change_request),
        Stage("deploy", actions.deploy, skip_condition=is_change_request),
        Stage("verify", actions.verify, skip_condition=is_change_request),
    ]


def cleanup_stage(actions: StageActions) -> Stage:
    """The always-run cleanup stage."""
    return Stage(CLEANUP_STAGE, actions.cleanup, required=False)
