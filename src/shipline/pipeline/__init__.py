"""Pipeline orchestration and stage execution."""

from shipline.pipeline.config import (
    ConfigError,
    DeployStrategy,
    PipelineConfig,
    create_default_config,
    load_pipeline_config,
)
from shipline.pipeline.context import (
    Environment,
    PipelineContext,
    derive_tag,
    resolve_environment,
)
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
from shipline.pipeline.hooks import NullHook, StageHook, WebhookNotifier
from shipline.pipeline.orchestrator import DeploymentOrchestrator
from shipline.pipeline.retry import RetryOutcome, retry_fixed
from shipline.pipeline.stages import (
    CLEANUP_STAGE,
    STAGE_ORDER,
    VERIFY_ATTEMPTS,
    RunArtifacts,
    Stage,
    StageActions,
)

__all__ = [
    "CLEANUP_STAGE",
    "STAGE_ORDER",
    "VERIFY_ATTEMPTS",
    "BuildFailure",
    "CheckoutFailure",
    "CleanupFailure",
    "ConfigError",
    "DeployFailure",
    "DeployStrategy",
    "DeploymentOrchestrator",
    "Environment",
    "NullHook",
    "PipelineConfig",
    "PipelineContext",
    "PipelineError",
    "PushDenied",
    "RetryOutcome",
    "RunArtifacts",
    "RunCancelled",
    "ScanFailure",
    "Stage",
    "StageActions",
    "StageHook",
    "TestFailure",
    "VerificationFailure",
    "WebhookNotifier",
    "create_default_config",
    "derive_tag",
    "load_pipeline_config",
    "resolve_environment",
    "retry_fixed",
]
