"""Tests for the docker and trivy collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from shipline.collaborators import CommandError, CommandNotFound, RegistrySession
from shipline.collaborators.docker import (
    DockerImageBuilder,
    DockerRegistryClient,
    DockerTestRunner,
    credential_env_names,
)
from shipline.collaborators.trivy import TrivyScanner
from shipline.pipeline import BuildFailure, PushDenied

if TYPE_CHECKING:
    from conftest import FakeRunner


@pytest.mark.parametrize(
    ("credential", "expected"),
    [
        ("registry-creds", ("REGISTRY_CREDS_USR", "REGISTRY_CREDS_PSW")),
        ("DOCKER_HUB", ("DOCKER_HUB_USR", "DOCKER_HUB_PSW")),
        ("ghcr.io token", ("GHCR_IO_TOKEN_USR", "GHCR_IO_TOKEN_PSW")),
    ],
)
def test_credential_env_names(credential: str, expected: tuple[str, str]) -> None:
    assert credential_env_names(credential) == expected


# --- DockerImageBuilder ---


class TestDockerImageBuilder:
    @pytest.mark.asyncio()
    async def test_build_argv(self, fake_runner: FakeRunner) -> None:
        builder = DockerImageBuilder(fake_runner, dockerfile="docker/Dockerfile")
        source = Path("/work/src")

        image = await builder.build(source, "acme/webapp:build-42")

        assert image == "acme/webapp:build-42"
        assert fake_runner.calls == [
            [
                "docker",
                "build",
                "--file",
                str(source / "docker/Dockerfile"),
                "--tag",
                "acme/webapp:build-42",
                str(source),
            ]
        ]

    @pytest.mark.asyncio()
    async def test_build_failure(self, fake_runner: FakeRunner) -> None:
        fake_runner.respond("docker", "build", returncode=1, stderr="COPY failed: no such file")
        builder = DockerImageBuilder(fake_runner)

        with pytest.raises(BuildFailure, match="COPY failed") as exc_info:
            await builder.build(Path("/work"), "acme/webapp:build-1")

        assert exc_info.value.stage == "build"

    @pytest.mark.asyncio()
    async def test_build_without_docker(self, fake_runner: FakeRunner) -> None:
        fake_runner.fail("docker", error=CommandNotFound(["docker"], "executable not found: docker"))
        builder = DockerImageBuilder(fake_runner)

        with pytest.raises(BuildFailure, match="executable not found"):
            await builder.build(Path("/work"), "acme/webapp:build-1")

    @pytest.mark.asyncio()
    async def test_tag(self, fake_runner: FakeRunner) -> None:
        builder = DockerImageBuilder(fake_runner)

        alias = await builder.tag("acme/webapp:build-1", "acme/webapp:latest")

        assert alias == "acme/webapp:latest"
        assert fake_runner.calls == [["docker", "tag", "acme/webapp:build-1", "acme/webapp:latest"]]

    @pytest.mark.asyncio()
    async def test_remove_missing_image_is_not_an_error(self, fake_runner: FakeRunner) -> None:
        fake_runner.respond(
            "docker", "image", "rm", returncode=1, stderr="Error: No such image: acme/webapp"
        )
        builder = DockerImageBuilder(fake_runner)

        assert await builder.remove("acme/webapp:build-1") is False

    @pytest.mark.asyncio()
    async def test_remove_other_error_raises(self, fake_runner: FakeRunner) -> None:
        fake_runner.respond(
            "docker", "image", "rm", returncode=1, stderr="image is being used by container"
        )
        builder = DockerImageBuilder(fake_runner)

        with pytest.raises(CommandError, match="being used"):
            await builder.remove("acme/webapp:build-1")


# --- DockerTestRunner ---


@pytest.mark.asyncio()
async def test_run_in_container(fake_runner: FakeRunner) -> None:
    fake_runner.respond("docker", "run", returncode=1, stdout="2 failed, 10 passed")
    tests = DockerTestRunner(fake_runner, timeout=600)

    exit_code, output = await tests.run_in_container("acme/webapp:build-1", ["pytest", "-q"])

    assert exit_code == 1
    assert output == "2 failed, 10 passed"
    assert fake_runner.calls == [["docker", "run", "--rm", "acme/webapp:build-1", "pytest", "-q"]]
    assert fake_runner.timeouts == [600]


# --- DockerRegistryClient ---


class TestDockerRegistryClient:
    @pytest.mark.asyncio()
    async def test_no_credential_is_anonymous(self, fake_runner: FakeRunner) -> None:
        client = DockerRegistryClient(fake_runner, registry_url="https://registry.example.com/")

        session = await client.authenticate(None)

        assert session.anonymous
        assert session.registry == "registry.example.com"
        assert fake_runner.calls == []

    @pytest.mark.asyncio()
    async def test_unbound_credential_is_denied(self, fake_runner: FakeRunner) -> None:
        client = DockerRegistryClient(fake_runner)

        with pytest.raises(PushDenied, match="REGISTRY_CREDS_USR"):
            await client.authenticate("registry-creds")

        assert fake_runner.calls == []

    @pytest.mark.asyncio()
    async def test_login_passes_password_on_stdin(
        self, fake_runner: FakeRunner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REGISTRY_CREDS_USR", "ci-bot")
        monkeypatch.setenv("REGISTRY_CREDS_PSW", "s3cret")
        client = DockerRegistryClient(fake_runner, registry_url="registry.example.com")

        session = await client.authenticate("registry-creds")

        assert session == RegistrySession(registry="registry.example.com", username="ci-bot")
        assert fake_runner.calls == [
            [
                "docker",
                "login",
                "--username",
                "ci-bot",
                "--password-stdin",
                "registry.example.com",
            ]
        ]
        assert fake_runner.inputs == ["s3cret"]
        assert all("s3cret" not in arg for arg in fake_runner.calls[0])

    @pytest.mark.asyncio()
    async def test_login_rejected(
        self, fake_runner: FakeRunner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REGISTRY_CREDS_USR", "ci-bot")
        monkeypatch.setenv("REGISTRY_CREDS_PSW", "wrong")
        fake_runner.respond("docker", "login", returncode=1, stderr="unauthorized: incorrect")
        client = DockerRegistryClient(fake_runner)

        with pytest.raises(PushDenied, match="login failed"):
            await client.authenticate("registry-creds")

    @pytest.mark.asyncio()
    async def test_push(self, fake_runner: FakeRunner) -> None:
        client = DockerRegistryClient(fake_runner)
        session = RegistrySession(registry=None, anonymous=True)

        await client.push("acme/webapp:build-1", session)

        assert fake_runner.calls == [["docker", "push", "acme/webapp:build-1"]]

    @pytest.mark.asyncio()
    async def test_push_denied(self, fake_runner: FakeRunner) -> None:
        fake_runner.respond(
            "docker", "push", returncode=1, stderr="denied: requested access to the resource is denied"
        )
        client = DockerRegistryClient(fake_runner)

        with pytest.raises(PushDenied, match="registry denied push"):
            await client.push("acme/webapp:build-1", RegistrySession(registry=None, anonymous=True))

    @pytest.mark.asyncio()
    async def test_push_transport_failure(self, fake_runner: FakeRunner) -> None:
        fake_runner.respond("docker", "push", returncode=1, stderr="net/http: TLS handshake timeout")
        client = DockerRegistryClient(fake_runner)

        with pytest.raises(PushDenied, match="exited 1"):
            await client.push("acme/webapp:build-1", RegistrySession(registry=None, anonymous=True))

    @pytest.mark.asyncio()
    async def test_logout(self, fake_runner: FakeRunner) -> None:
        client = DockerRegistryClient(fake_runner)

        await client.logout(RegistrySession(registry="registry.example.com", username="ci-bot"))
        await client.logout(RegistrySession(registry=None, anonymous=True))

        assert fake_runner.calls == [["docker", "logout", "registry.example.com"]]


# --- TrivyScanner ---


@pytest.mark.asyncio()
async def test_trivy_scan(fake_runner: FakeRunner) -> None:
    fake_runner.respond("trivy", returncode=1, stdout="CVE-2024-0001 CRITICAL openssl")
    scanner = TrivyScanner(fake_runner, severity="CRITICAL")

    exit_code, output = await scanner.scan("acme/webapp:build-1")

    assert exit_code == 1
    assert "CVE-2024-0001" in output
    assert fake_runner.calls == [
        [
            "trivy",
            "image",
            "--exit-code",
            "1",
            "--severity",
            "CRITICAL",
            "--no-progress",
            "acme/webapp:build-1",
        ]
    ]
