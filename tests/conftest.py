"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from shipline.collaborators import Collaborators, CommandResult, RegistrySession
from shipline.pipeline import PipelineConfig, PipelineContext

# Variables that change config loading or CLI defaults when set in the outer shell
_ENV_VARS = (
    "SHIPLINE_REGISTRY",
    "SHIPLINE_CREDENTIAL",
    "SHIPLINE_STRATEGY",
    "SHIPLINE_VERIFY_DELAY",
    "SHIPLINE_WEBHOOK_URL",
    "BRANCH_NAME",
    "BUILD_NUMBER",
    "GIT_COMMIT",
    "CHANGE_ID",
)


class FakeRunner:
    """Command runner that records argv and replays scripted results.

    Responses are matched by argv prefix; the most recently registered
    matching prefix wins. Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.timeouts: list[float | None] = []
        self._responses: list[tuple[tuple[str, ...], CommandResult | Exception]] = []

    def respond(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        result = CommandResult(list(prefix), returncode, stdout, stderr)
        self._responses.append((prefix, result))

    def fail(self, *prefix: str, error: Exception) -> None:
        self._responses.append((prefix, error))

    async def run(
        self,
        argv: Sequence[str],
        *,
        input_data: str | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = [str(arg) for arg in argv]
        self.calls.append(argv)
        self.inputs.append(input_data)
        self.timeouts.append(timeout)

        for prefix, response in reversed(self._responses):
            if tuple(argv[: len(prefix)]) == prefix:
                if isinstance(response, Exception):
                    raise response
                return CommandResult(argv, response.returncode, response.stdout, response.stderr)
        return CommandResult(argv, 0)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CI and SHIPLINE_* variables from the outer shell out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a command runner that records calls instead of running them."""
    return FakeRunner()


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Return a registry-backed docker config with the default 10s verify delay."""
    return PipelineConfig.from_dict(
        {
            "name": "webapp",
            "image": {
                "name": "acme/webapp",
                "registry": "registry.example.com",
                "credential": "registry-creds",
            },
            "app": {"service_name": "webapp", "port": 8080},
        }
    )


@pytest.fixture
def context(pipeline_config: PipelineConfig, tmp_path: Path) -> PipelineContext:
    """Return the context for build 42 of main."""
    return PipelineContext.create(
        pipeline_config,
        branch="main",
        build_number=42,
        source_dir=tmp_path,
    )


@pytest.fixture
def collaborators(tmp_path: Path) -> Collaborators:
    """Return collaborators whose every call succeeds."""
    checkout = MagicMock()
    checkout.checkout = AsyncMock(return_value=tmp_path)
    checkout.release = AsyncMock()

    builder = MagicMock()
    builder.build = AsyncMock(side_effect=lambda source, tag: tag)
    builder.tag = AsyncMock(side_effect=lambda image, alias: alias)
    builder.remove = AsyncMock(return_value=True)

    tests = MagicMock()
    tests.run_in_container = AsyncMock(return_value=(0, "5 passed"))

    scanner = MagicMock()
    scanner.scan = AsyncMock(return_value=(0, ""))

    registry = MagicMock()
    registry.authenticate = AsyncMock(
        return_value=RegistrySession(registry="registry.example.com", username="ci")
    )
    registry.push = AsyncMock()
    registry.logout = AsyncMock()

    target = MagicMock()
    target.name = "docker"
    target.deploy = AsyncMock(return_value="container webapp running")

    prober = MagicMock()
    prober.probe = AsyncMock(return_value=True)

    return Collaborators(
        checkout=checkout,
        builder=builder,
        tests=tests,
        scanner=scanner,
        registry=registry,
        target=target,
        prober=prober,
    )
