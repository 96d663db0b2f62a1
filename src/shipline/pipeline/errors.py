"""Error taxonomy for pipeline runs.

Each failure type is bound to the stage that raises it. Collaborators raise
these directly so the orchestrator can report the failing stage together
with the underlying tool error.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Raised when a pipeline stage fails."""

    stage_name = "pipeline"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        self.stage = stage or self.stage_name
        self.detail = message
        super().__init__(f"Pipeline error in stage '{self.stage}': {message}")


class CheckoutFailure(PipelineError):
    """Raised when the source revision cannot be checked out."""

    stage_name = "checkout"


class BuildFailure(PipelineError):
    """Raised when the image build fails."""

    stage_name = "build"


class TestFailure(PipelineError):
    """Raised when the test command exits non-zero inside the image."""

    __test__ = False  # not a pytest test class
    stage_name = "test"

    def __init__(self, message: str, *, exit_code: int | None = None, output: str = "") -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class ScanFailure(PipelineError):
    """Raised when the vulnerability scan reports blocking findings."""

    stage_name = "scan"


class PushDenied(PipelineError):
    """Raised when the registry rejects authentication or the push."""

    stage_name = "push"


class DeployFailure(PipelineError):
    """Raised when a deployment target reports an error or a rollout times out."""

    stage_name = "deploy"


class VerificationFailure(PipelineError):
    """Raised when every liveness probe attempt failed, or probing itself broke.

    ``reason`` is set when an attempt raised instead of answering.
    """

    stage_name = "verify"

    def __init__(self, url: str | None, attempts: int = 0, *, reason: str | None = None) -> None:
        self.url = url
        self.attempts = attempts
        self.reason = reason
        if reason is None:
            message = f"{url} not reachable after {attempts} attempt(s)"
        else:
            target = url or "liveness endpoint"
            where = f" on attempt {attempts}" if attempts else ""
            message = f"probing {target} failed{where}: {reason}"
        super().__init__(message)


class CleanupFailure(PipelineError):
    """Raised by cleanup actions. Logged and reported, never fails a run."""

    stage_name = "cleanup"


class RunCancelled(PipelineError):
    """Raised at a stage boundary after cancel() was requested."""

    def __init__(self, stage: str) -> None:
        super().__init__("run cancelled before stage started", stage=stage)
