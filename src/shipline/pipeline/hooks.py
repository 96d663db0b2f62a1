"""Hooks observing pipeline stage transitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx

from shipline.observability.logging import get_logger

if TYPE_CHECKING:
    from shipline.models.run import RunReport, StageResult
    from shipline.pipeline.context import PipelineContext

log = get_logger(__name__)


class StageHook(Protocol):
    """Protocol for hooks notified as a run progresses.

    Hooks observe only. An exception raised by a hook is logged and
    never changes the run's outcome.
    """

    async def on_stage_start(self, stage: str, context: PipelineContext) -> None:
        """Called before a stage's action runs (not for skipped stages)."""
        ...

    async def on_stage_complete(self, stage: str, result: StageResult) -> None:
        """Called with every stage result, skipped stages included."""
        ...

    async def on_run_complete(self, report: RunReport) -> None:
        """Called once with the final report, after cleanup."""
        ...


class NullHook:
    """Hook that ignores every event."""

    async def on_stage_start(self, _stage: str, _context: PipelineContext) -> None:
        return None

    async def on_stage_complete(self, _stage: str, _result: StageResult) -> None:
        return None

    async def on_run_complete(self, _report: RunReport) -> None:
        return None


class WebhookNotifier(NullHook):
    """Post the run summary to a chat webhook when the run completes.

    The payload is ``{"text": summary}``, which Slack and Mattermost
    incoming webhooks accept as-is.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def on_run_complete(self, report: RunReport) -> None:
        prefix = ":white_check_mark:" if report.succeeded else ":x:"
        payload = {"text": f"{prefix} {report.summary()}"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload)
        response.raise_for_status()
        log.info("notification_sent", status=report.status)
