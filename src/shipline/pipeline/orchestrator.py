"""Deployment orchestrator for stage execution."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from shipline.models.run import RunReport, RunState, StageResult
from shipline.observability.logging import get_logger, run_log_context, stage_log_context
from shipline.pipeline.errors import (
    BuildFailure,
    CheckoutFailure,
    CleanupFailure,
    DeployFailure,
    PipelineError,
    PushDenied,
    RunCancelled,
    ScanFailure,
    TestFailure,
    VerificationFailure,
)
from shipline.pipeline.stages import (
    RunArtifacts,
    Stage,
    StageActions,
    cleanup_stage,
    default_stages,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from shipline.collaborators.factory import Collaborators
    from shipline.pipeline.config import PipelineConfig
    from shipline.pipeline.context import PipelineContext
    from shipline.pipeline.hooks import StageHook
    from shipline.pipeline.retry import SleepFn

log = get_logger(__name__)

# State entered when a stage succeeds, and when it is skipped (None = no transition)
STAGE_STATES: dict[str, tuple[RunState, RunState | None]] = {
    "checkout": (RunState.CHECKED_OUT, None),
    "build": (RunState.BUILT, None),
    "test": (RunState.TESTED, None),
    "scan": (RunState.SCANNED, None),
    "push": (RunState.PUSHED, RunState.PUSH_SKIPPED),
    "deploy": (RunState.DEPLOYED, RunState.DEPLOY_SKIPPED),
    "verify": (RunState.VERIFIED, None),
}

# Failure built from the message when a stage raises something outside the taxonomy
_STAGE_FAILURES: dict[str, Callable[[str], PipelineError]] = {
    "checkout": CheckoutFailure,
    "build": BuildFailure,
    "test": TestFailure,
    "scan": ScanFailure,
    "push": PushDenied,
    "deploy": DeployFailure,
    "verify": lambda message: VerificationFailure(None, reason=message),
    "cleanup": CleanupFailure,
}


class DeploymentOrchestrator:
    """Run the pipeline stages for one context at a time.

    Stages execute strictly in order. The first failure of a required stage
    stops the sequence; cleanup runs regardless and cannot change the
    outcome already decided.

    Attributes:
        stages: Stages in execution order, cleanup excluded.
        cleanup: The always-run cleanup stage.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        cleanup: Stage,
        hooks: Sequence[StageHook] = (),
    ) -> None:
        """Initialize the orchestrator.

        Args:
            stages: Stages to run, in order.
            cleanup: Stage run after everything else, whatever happened.
            hooks: Observers notified of stage and run progress.

        Raises:
            ValueError: If stage names are not unique.
        """
        names = [stage.name for stage in stages] + [cleanup.name]
        if len(names) != len(set(names)):
            raise ValueError(f"stage names must be unique: {names}")

        self.stages = list(stages)
        self.cleanup = cleanup
        self._hooks = list(hooks)
        self._cancel_requested = False

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        collaborators: Collaborators,
        hooks: Sequence[StageHook] = (),
        sleep: SleepFn = asyncio.sleep,
    ) -> DeploymentOrchestrator:
        """Build an orchestrator with the standard stage sequence.

        Args:
            config: Pipeline configuration.
            collaborators: External systems used by the stage actions.
            hooks: Observers notified of progress.
            sleep: Sleep used between verification attempts.

        Returns:
            Configured DeploymentOrchestrator.
        """
        actions = StageActions(collaborators, config, sleep=sleep)
        return cls(default_stages(actions, config), cleanup_stage(actions), hooks=hooks)

    def cancel(self) -> None:
        """Request cancellation. Takes effect before the next stage starts."""
        self._cancel_requested = True
        log.warning("run_cancel_requested")

    async def run(self, context: PipelineContext) -> RunReport:
        """Execute every stage for ``context`` and return the final report.

        Args:
            context: Fully populated, immutable run context.

        Returns:
            RunReport with status "success" or "failed".

        Raises:
            ValueError: If the context carries no image tag.
        """
        if not context.image_tag:
            raise ValueError("context.image_tag must be a non-empty identifier")

        with run_log_context(context):
            return await self._run(context)

    async def _run(self, context: PipelineContext) -> RunReport:
        start_time = time.perf_counter()
        self._cancel_requested = False
        artifacts = RunArtifacts()
        results: list[StageResult] = []
        states: list[RunState] = [RunState.PENDING]
        failure: StageResult | None = None

        log.info("run_start", image=context.image_reference, change_request=context.change_request)

        for stage in self.stages:
            if self._cancel_requested:
                error = RunCancelled(stage.name)
                failure = _failed_result(stage.name, error, 0.0)
                results.append(failure)
                await self._notify_complete(stage.name, failure)
                log.warning("run_cancelled", stage=stage.name)
                break

            if stage.should_skip(context):
                result = StageResult(stage=stage.name, status="skipped")
                log.info("stage_skipped", stage=stage.name)
                results.append(result)
                skipped_state = STAGE_STATES.get(stage.name, (None, None))[1]
                if skipped_state is not None:
                    states.append(skipped_state)
                await self._notify_complete(stage.name, result)
                continue

            result = await self._execute(stage, context, artifacts)
            results.append(result)
            await self._notify_complete(stage.name, result)

            if result.status == "success":
                reached = STAGE_STATES.get(stage.name, (None, None))[0]
                if reached is not None:
                    states.append(reached)
            elif stage.required:
                failure = result
                break
            else:
                log.warning("optional_stage_failed", stage=stage.name, error=result.error)

        if failure is not None:
            states.append(RunState.FAILED)

        cleanup_result = await self._execute(self.cleanup, context, artifacts)
        if cleanup_result.failed:
            log.warning("cleanup_failed", error=cleanup_result.error)
        results.append(cleanup_result)
        await self._notify_complete(self.cleanup.name, cleanup_result)

        states.append(RunState.DONE if failure is None else RunState.DONE_FAILED)
        duration = time.perf_counter() - start_time

        report = RunReport(
            status="success" if failure is None else "failed",
            environment=str(context.target_environment),
            image=context.image_reference,
            tag=context.image_tag,
            stages=results,
            states=states,
            failed_stage=failure.stage if failure else None,
            error=failure.error if failure else None,
            verification_attempts=artifacts.verification_attempts,
            duration_seconds=duration,
        )

        log.info(
            "run_complete",
            status=report.status,
            failed_stage=report.failed_stage,
            duration=f"{duration:.2f}s",
        )

        for hook in self._hooks:
            try:
                await hook.on_run_complete(report)
            except Exception as e:
                log.warning("hook_failed", hook_event="run_complete", error=str(e))

        return report

    async def _execute(
        self,
        stage: Stage,
        context: PipelineContext,
        artifacts: RunArtifacts,
    ) -> StageResult:
        """Run one stage's action and turn its outcome into a StageResult."""
        with stage_log_context(stage.name):
            return await self._attempt_stage(stage, context, artifacts)

    async def _attempt_stage(
        self,
        stage: Stage,
        context: PipelineContext,
        artifacts: RunArtifacts,
    ) -> StageResult:
        start_time = time.perf_counter()
        log.info("stage_start", stage=stage.name)

        for hook in self._hooks:
            try:
                await hook.on_stage_start(stage.name, context)
            except Exception as e:
                log.warning("hook_failed", hook_event="stage_start", stage=stage.name, error=str(e))

        try:
            detail = await stage.action(context, artifacts)
        except PipelineError as e:
            duration = time.perf_counter() - start_time
            log.error("stage_failed", stage=stage.name, error=e.detail, duration=f"{duration:.2f}s")
            return _failed_result(stage.name, e, duration, artifacts)
        except Exception as e:
            duration = time.perf_counter() - start_time
            log.error(
                "stage_failed",
                stage=stage.name,
                error=str(e),
                duration=f"{duration:.2f}s",
                exc_info=True,
            )
            wrapped = _wrap_error(stage.name, e)
            return _failed_result(stage.name, wrapped, duration, artifacts)

        duration = time.perf_counter() - start_time
        log.info("stage_complete", stage=stage.name, duration=f"{duration:.2f}s")
        return StageResult(
            stage=stage.name,
            status="success",
            detail=detail or "",
            attempts=_attempts_for(stage.name, artifacts),
            duration_seconds=duration,
        )

    async def _notify_complete(self, stage: str, result: StageResult) -> None:
        for hook in self._hooks:
            try:
                await hook.on_stage_complete(stage, result)
            except Exception as e:
                log.warning("hook_failed", hook_event="stage_complete", stage=stage, error=str(e))


def _wrap_error(stage: str, error: Exception) -> PipelineError:
    failure_type = _STAGE_FAILURES.get(stage)
    if failure_type is None:
        wrapped = PipelineError(str(error), stage=stage)
    else:
        wrapped = failure_type(str(error))
    wrapped.__cause__ = error
    return wrapped


def _attempts_for(stage: str, artifacts: RunArtifacts) -> int:
    return artifacts.verification_attempts if stage == "verify" else 1


def _failed_result(
    stage: str,
    error: PipelineError,
    duration: float,
    artifacts: RunArtifacts | None = None,
) -> StageResult:
    attempts = 0
    if artifacts is not None:
        attempts = _attempts_for(stage, artifacts)
    return StageResult(
        stage=stage,
        status="failed",
        error=error.detail,
        error_type=type(error).__name__,
        attempts=attempts,
        duration_seconds=duration,
    )
