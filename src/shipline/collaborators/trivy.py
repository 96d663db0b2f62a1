"""Image vulnerability scanning with trivy."""

from __future__ import annotations

from shipline.collaborators.command import Runner


class TrivyScanner:
    """Fail when the image has findings at or above the configured severity."""

    def __init__(
        self,
        runner: Runner,
        severity: str = "HIGH,CRITICAL",
        trivy: str = "trivy",
        timeout: float | None = None,
    ) -> None:
        self._runner = runner
        self._severity = severity
        self._trivy = trivy
        self._timeout = timeout

    async def scan(self, image: str) -> tuple[int, str]:
        argv = [
            self._trivy,
            "image",
            "--exit-code",
            "1",
            "--severity",
            self._severity,
            "--no-progress",
            image,
        ]
        result = await self._runner.run(argv, timeout=self._timeout)
        return result.returncode, result.output
