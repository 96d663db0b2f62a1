"""Test CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from shipline import __version__
from shipline.cli import _init_project, app
from shipline.models import RunReport, StageResult
from shipline.pipeline import DeployStrategy, load_pipeline_config

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


def _write_config(project: Path, extra: str = "") -> None:
    project.mkdir(parents=True, exist_ok=True)
    (project / "shipline.yaml").write_text(
        "name: webapp\nimage:\n  name: webapp\napp:\n  port: 8080\n" + extra
    )


def _report(status: str = "success") -> RunReport:
    failed = status == "failed"
    return RunReport(
        status=status,
        environment="production",
        image="webapp:build-42",
        tag="build-42",
        stages=[
            StageResult(stage="checkout", status="success", detail="workspace ."),
            StageResult(
                stage="test",
                status="failed" if failed else "success",
                error="'pytest' exited 1" if failed else None,
                error_type="TestFailure" if failed else None,
            ),
        ],
        failed_stage="test" if failed else None,
        error="'pytest' exited 1" if failed else None,
    )


def test_version_command() -> None:
    """Test shipline version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    """Test that no arguments shows help."""
    result = runner.invoke(app, [])
    # no_args_is_help=True returns exit code 2 (not 0 like --help)
    assert result.exit_code == 2
    assert "Shipline" in result.stdout


# --- Init Command Tests ---


def test_init_creates_project(tmp_path: Path) -> None:
    result = runner.invoke(app, ["init", "webapp", "--path", str(tmp_path)])

    assert result.exit_code == 0
    assert "Created project" in result.stdout
    assert (tmp_path / "webapp" / "shipline.yaml").exists()


def test_init_config_round_trips(tmp_path: Path) -> None:
    """The written shipline.yaml loads back with the requested strategy."""
    project_path = _init_project("webapp", tmp_path, strategy="kubernetes")

    config = load_pipeline_config(project_path)

    assert config.name == "webapp"
    assert config.deploy.strategy == DeployStrategy.KUBERNETES
    assert config.app.test_command == ["python", "-m", "pytest"]
    assert config.verify.delay == 10.0


def test_init_existing_directory_fails(tmp_path: Path) -> None:
    (tmp_path / "webapp").mkdir()

    result = runner.invoke(app, ["init", "webapp", "--path", str(tmp_path)])

    assert result.exit_code == 1
    assert "already exists" in result.stdout


def test_init_unknown_strategy_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["init", "webapp", "--path", str(tmp_path), "--strategy", "nomad"])

    assert result.exit_code == 1
    assert not (tmp_path / "webapp").exists()


# --- Plan Command Tests ---


def test_plan_change_request_skips_publish(tmp_path: Path) -> None:
    _write_config(tmp_path)

    result = runner.invoke(
        app,
        ["plan", "--project", str(tmp_path), "--branch", "feature/x", "--build", "7", "--change-request"],
    )

    assert result.exit_code == 0
    assert "staging" in result.stdout
    assert "webapp:build-7" in result.stdout
    assert "skip" in result.stdout
    assert "http://localhost:8081/" in result.stdout


def test_plan_reads_ci_environment(tmp_path: Path) -> None:
    _write_config(tmp_path)

    result = runner.invoke(
        app,
        ["plan", "--project", str(tmp_path)],
        env={"BRANCH_NAME": "main", "BUILD_NUMBER": "12"},
    )

    assert result.exit_code == 0
    assert "production" in result.stdout
    assert "webapp:build-12" in result.stdout
    assert "skip" not in result.stdout


def test_plan_without_config(tmp_path: Path) -> None:
    result = runner.invoke(app, ["plan", "--project", str(tmp_path), "--branch", "main", "--build", "1"])

    assert result.exit_code == 1
    assert "No shipline.yaml" in result.stdout


def test_plan_cloudrun_without_region(tmp_path: Path) -> None:
    _write_config(tmp_path, "deploy:\n  strategy: cloudrun\n")

    result = runner.invoke(app, ["plan", "--project", str(tmp_path), "--branch", "main", "--build", "1"])

    assert result.exit_code == 1
    assert "region" in result.stdout


# --- Run Command Tests ---


def test_run_success(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli._run_pipeline_async", new=AsyncMock(return_value=_report())) as mock_run:
        result = runner.invoke(
            app, ["run", "--project", str(tmp_path), "--branch", "main", "--build", "42"]
        )

    assert result.exit_code == 0
    assert "Deployed" in result.stdout
    context = mock_run.call_args.args[1]
    assert context.image_tag == "build-42"
    assert str(context.target_environment) == "production"
    assert not context.change_request


def test_run_failure_exits_nonzero(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli._run_pipeline_async", new=AsyncMock(return_value=_report("failed"))):
        result = runner.invoke(
            app, ["run", "--project", str(tmp_path), "--branch", "main", "--build", "42"]
        )

    assert result.exit_code == 1
    assert "Pipeline failed" in result.stdout


def test_run_change_id_marks_change_request(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli._run_pipeline_async", new=AsyncMock(return_value=_report())) as mock_run:
        runner.invoke(
            app,
            ["run", "--project", str(tmp_path), "--branch", "PR-17", "--build", "3"],
            env={"CHANGE_ID": "17"},
        )

    assert mock_run.call_args.args[1].change_request


def test_run_strategy_override(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli._run_pipeline_async", new=AsyncMock(return_value=_report())) as mock_run:
        runner.invoke(
            app,
            [
                "run",
                "--project",
                str(tmp_path),
                "--branch",
                "main",
                "--build",
                "1",
                "--strategy",
                "swarm",
            ],
        )

    config = mock_run.call_args.args[0]
    assert config.deploy.strategy == DeployStrategy.SWARM


def test_run_requires_build_number(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli._run_pipeline_async", new=AsyncMock()) as mock_run:
        result = runner.invoke(app, ["run", "--project", str(tmp_path), "--branch", "main"])

    assert result.exit_code == 1
    assert "Build number is required" in result.stdout
    mock_run.assert_not_called()


def test_run_rejects_zero_build_number(tmp_path: Path) -> None:
    _write_config(tmp_path)

    result = runner.invoke(
        app, ["run", "--project", str(tmp_path), "--branch", "main", "--build", "0"]
    )

    assert result.exit_code == 1
    assert "positive" in result.stdout


def test_run_invalid_config(tmp_path: Path) -> None:
    _write_config(tmp_path, "deploy:\n  replicas: 0\n")

    result = runner.invoke(
        app, ["run", "--project", str(tmp_path), "--branch", "main", "--build", "1"]
    )

    assert result.exit_code == 1
    assert "replicas" in result.stdout


# --- Doctor Command Tests ---


def test_doctor_all_tools_present(tmp_path: Path) -> None:
    _write_config(tmp_path)

    with patch("shipline.cli.shutil.which", side_effect=lambda tool: f"/usr/bin/{tool}"):
        result = runner.invoke(app, ["doctor", "--project", str(tmp_path)])

    assert result.exit_code == 0
    assert "trivy" in result.stdout
    assert "All checks passed" in result.stdout


def test_doctor_missing_tool(tmp_path: Path) -> None:
    _write_config(tmp_path, "deploy:\n  strategy: kubernetes\n")

    with patch(
        "shipline.cli.shutil.which",
        side_effect=lambda tool: None if tool == "kubectl" else f"/usr/bin/{tool}",
    ):
        result = runner.invoke(app, ["doctor", "--project", str(tmp_path)])

    assert result.exit_code == 1
    assert "kubectl" in result.stdout
    assert "Some checks failed" in result.stdout
