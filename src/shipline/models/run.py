"""Run result models.

A run produces one StageResult per stage (cleanup included) and a single
RunReport carrying the terminal status.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class RunState(StrEnum):
    """States a run passes through, in order."""

    PENDING = "pending"
    CHECKED_OUT = "checked_out"
    BUILT = "built"
    TESTED = "tested"
    SCANNED = "scanned"
    PUSHED = "pushed"
    PUSH_SKIPPED = "push_skipped"
    DEPLOYED = "deployed"
    DEPLOY_SKIPPED = "deploy_skipped"
    VERIFIED = "verified"
    FAILED = "failed"
    DONE = "done"
    DONE_FAILED = "done_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.DONE_FAILED)


class StageResult(BaseModel):
    """Outcome of one stage.

    ``skipped`` means the stage's skip condition held; it is never a failure.
    """

    stage: str = Field(min_length=1)
    status: Literal["success", "failed", "skipped"]
    detail: str = ""
    error: str | None = None
    error_type: str | None = None
    attempts: int = 0
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class RunReport(BaseModel):
    """Final report of a pipeline run."""

    status: Literal["success", "failed"]
    environment: str
    image: str
    tag: str
    stages: list[StageResult] = Field(default_factory=list)
    states: list[RunState] = Field(default_factory=list)
    failed_stage: str | None = None
    error: str | None = None
    verification_attempts: int = 0
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def final_state(self) -> RunState:
        return self.states[-1] if self.states else RunState.PENDING

    def stage(self, name: str) -> StageResult | None:
        """Look up the result for a stage by name."""
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    def summary(self) -> str:
        """One-line human summary of the run."""
        if self.succeeded:
            deploy = self.stage("deploy")
            if deploy is not None and deploy.status == "skipped":
                return (
                    f"Built {self.image} (tag {self.tag}) for {self.environment}; "
                    "push and deploy skipped"
                )
            return f"Deployed {self.image} (tag {self.tag}) to {self.environment}"
        return f"Pipeline failed at stage '{self.failed_stage}': {self.error}"
