"""Shipline CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import os
import shutil
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from shipline.observability import close_file_logging, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

if TYPE_CHECKING:
    from shipline.models.run import RunReport, StageResult
    from shipline.pipeline import PipelineConfig, PipelineContext

app = typer.Typer(
    name="shipline",
    help="Shipline: build, test, scan, push and deploy a container app.",
    no_args_is_help=True,
)
console = Console()

STATUS_ICONS = {
    "success": "[green]✓[/green] success",
    "skipped": "[dim]○[/dim] skipped",
    "failed": "[red]✗[/red] failed",
}

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/debug.jsonl.",
        ),
    ] = False,
) -> None:
    """Shipline: build, test, scan, push and deploy a container app."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log

    # Console logging now; file logging once the project directory is known
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    """Configure file logging if --log flag was set."""
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _load_config(project_path: Path) -> PipelineConfig:
    """Load shipline.yaml, exiting with an error message if it is unusable."""
    from shipline.pipeline.config import CONFIG_FILENAME, ConfigError, load_pipeline_config

    if not (project_path / CONFIG_FILENAME).exists():
        console.print(
            f"[red]Error:[/red] No {CONFIG_FILENAME} found in {project_path}. "
            "Run 'shipline init <name>' first or pass --project."
        )
        raise typer.Exit(1)

    try:
        return load_pipeline_config(project_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _build_context(
    config: PipelineConfig,
    project_path: Path,
    branch: str | None,
    build_number: int | None,
    revision: str | None,
    change_request: bool | None,
) -> PipelineContext:
    """Resolve run inputs into a PipelineContext, exiting on missing values.

    ``change_request`` defaults to whether CHANGE_ID is set, which is how CI
    servers mark pull/merge request builds.
    """
    from shipline.pipeline.context import PipelineContext

    if not branch:
        console.print("[red]Error:[/red] Branch is required (--branch or BRANCH_NAME).")
        raise typer.Exit(1)
    if build_number is None:
        console.print("[red]Error:[/red] Build number is required (--build or BUILD_NUMBER).")
        raise typer.Exit(1)

    if change_request is None:
        change_request = bool(os.getenv("CHANGE_ID"))

    try:
        return PipelineContext.create(
            config,
            branch=branch,
            build_number=build_number,
            revision=revision,
            change_request=change_request,
            source_dir=project_path,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _apply_strategy_override(config: PipelineConfig, strategy: str | None) -> None:
    if strategy is None:
        return
    from shipline.pipeline.config import DeployStrategy

    try:
        config.deploy.strategy = DeployStrategy(strategy.lower())
    except ValueError as e:
        choices = ", ".join(s.value for s in DeployStrategy)
        console.print(f"[red]Error:[/red] Unknown strategy '{strategy}' (choose from {choices})")
        raise typer.Exit(1) from e


class ConsoleHook:
    """Print stage progress as the run advances."""

    def __init__(self, console_: Console) -> None:
        self._console = console_

    async def on_stage_start(self, stage: str, _context: PipelineContext) -> None:
        self._console.print(f"[cyan]▶[/cyan] {stage}")

    async def on_stage_complete(self, stage: str, result: StageResult) -> None:
        icon = STATUS_ICONS.get(result.status, result.status)
        line = f"  {icon} {stage}"
        if result.status != "skipped":
            line += f" [dim]({result.duration_seconds:.1f}s)[/dim]"
        self._console.print(line)
        if result.error:
            self._console.print(f"    [red]{result.error_type}:[/red] {result.error}")

    async def on_run_complete(self, _report: RunReport) -> None:
        return None


# Common options shared by plan and run
ProjectOption = Annotated[
    Path,
    typer.Option("--project", "-p", help="Project directory containing shipline.yaml."),
]
BranchOption = Annotated[
    str | None,
    typer.Option("--branch", "-b", envvar="BRANCH_NAME", help="Branch being built."),
]
BuildOption = Annotated[
    int | None,
    typer.Option("--build", "-n", envvar="BUILD_NUMBER", help="Build counter; fixes the image tag."),
]
ChangeRequestOption = Annotated[
    bool | None,
    typer.Option(
        "--change-request/--branch-build",
        help="Treat the run as a pull/merge request (skips push and deploy). "
        "Defaults to whether CHANGE_ID is set.",
    ),
]
StrategyOption = Annotated[
    str | None,
    typer.Option("--strategy", help="Override deploy.strategy (docker, kubernetes, swarm, cloudrun)."),
]


@app.command()
def version() -> None:
    """Show version information."""
    from shipline import __version__

    console.print(f"Shipline v{__version__}")


def _init_project(name: str, parent_dir: Path, strategy: str | None = None) -> Path:
    """Create a new project directory containing shipline.yaml.

    Raises:
        typer.Exit: If the directory already exists or the strategy is unknown.
    """
    from ruamel.yaml import YAML

    from shipline.pipeline.config import CONFIG_FILENAME, create_default_config

    project_path = parent_dir / name
    if project_path.exists():
        console.print(f"[red]Error:[/red] Directory '{project_path}' already exists")
        raise typer.Exit(1)

    try:
        config = create_default_config(name, strategy=strategy.lower() if strategy else None)
    except ValueError as e:
        console.print(f"[red]Error:[/red] Unknown strategy '{strategy}'")
        raise typer.Exit(1) from e

    project_path.mkdir(parents=True)

    config_data: dict[str, Any] = {
        "name": config.name,
        "version": config.version,
        "image": {
            "name": config.image.name,
            "registry": None,
            "credential": None,
            "dockerfile": config.image.dockerfile,
        },
        "app": {
            "service_name": config.app.service_name,
            "port": config.app.port,
            "test_command": " ".join(config.app.test_command),
        },
        "deploy": {
            "strategy": str(config.deploy.strategy),
            "replicas": config.deploy.replicas,
            "rollout_timeout": config.deploy.rollout_timeout,
        },
        "verify": {"delay": config.verify.delay},
        "scan": {"enabled": config.scan.enabled, "severity": config.scan.severity},
    }

    yaml_writer = YAML()
    yaml_writer.default_flow_style = False
    with (project_path / CONFIG_FILENAME).open("w", encoding="utf-8") as f:
        yaml_writer.dump(config_data, f)

    return project_path


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name (also the image and service name)")],
    path: Annotated[
        Path,
        typer.Option("--path", help="Parent directory for the project."),
    ] = Path(),
    strategy: StrategyOption = None,
) -> None:
    """Initialize a new pipeline project with a default shipline.yaml."""
    project_path = _init_project(name, path, strategy=strategy)

    console.print(f"[green]✓[/green] Created project: [bold]{name}[/bold]")
    console.print(f"  Location: {project_path.absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f"  edit {project_path / 'shipline.yaml'}")
    console.print(f"  shipline plan --project {project_path} --branch main --build 1")


@app.command()
def plan(
    project: ProjectOption = Path(),
    branch: BranchOption = None,
    build_number: BuildOption = None,
    revision: Annotated[
        str | None, typer.Option("--revision", envvar="GIT_COMMIT", help="Source revision.")
    ] = None,
    change_request: ChangeRequestOption = None,
    strategy: StrategyOption = None,
) -> None:
    """Show what a run would do without running anything."""
    from shipline.collaborators import create_collaborators
    from shipline.pipeline import ConfigError, DeploymentOrchestrator

    config = _load_config(project)
    _apply_strategy_override(config, strategy)
    context = _build_context(config, project, branch, build_number, revision, change_request)

    try:
        orchestrator = DeploymentOrchestrator.from_config(config, create_collaborators(config))
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    environment = str(context.target_environment)
    console.print()
    console.print(f"[bold]Environment:[/bold] {environment}")
    console.print(f"[bold]Image:[/bold] {context.image_reference}")
    console.print(f"[bold]Strategy:[/bold] {config.deploy.strategy}")
    console.print(f"[bold]Verify URL:[/bold] {config.verify_url(environment, context.app_port)}")

    table = Table(title=f"Pipeline Plan: {config.name}")
    table.add_column("Stage", style="cyan")
    table.add_column("Action", style="bold")
    for stage in [*orchestrator.stages, orchestrator.cleanup]:
        action = "[dim]○[/dim] skip" if stage.should_skip(context) else "[green]▶[/green] run"
        table.add_row(stage.name, action)

    console.print()
    console.print(table)
    console.print()


async def _run_pipeline_async(config: PipelineConfig, context: PipelineContext) -> RunReport:
    """Build collaborators and orchestrator, then run the pipeline.

    SIGINT requests cancellation, which takes effect between stages.
    """
    from shipline.collaborators import create_collaborators
    from shipline.pipeline import DeploymentOrchestrator, WebhookNotifier

    log = get_logger(__name__)
    hooks: list[Any] = [ConsoleHook(console)]
    if config.notify.webhook_url:
        hooks.append(WebhookNotifier(config.notify.webhook_url))

    orchestrator = DeploymentOrchestrator.from_config(
        config, create_collaborators(config), hooks=hooks
    )
    log.debug("strategy_configured", strategy=str(config.deploy.strategy))

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    try:
        return await orchestrator.run(context)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)


def _print_report(report: RunReport, title: str) -> None:
    table = Table(title=f"Pipeline Report: {title}")
    table.add_column("Stage", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Detail")
    table.add_column("Time", style="dim", justify="right")

    for result in report.stages:
        detail = result.error if result.failed else result.detail
        duration = "-" if result.status == "skipped" else f"{result.duration_seconds:.1f}s"
        table.add_row(
            result.stage,
            STATUS_ICONS.get(result.status, result.status),
            (detail or "").splitlines()[0] if detail else "",
            duration,
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def run(
    project: ProjectOption = Path(),
    branch: BranchOption = None,
    build_number: BuildOption = None,
    revision: Annotated[
        str | None, typer.Option("--revision", envvar="GIT_COMMIT", help="Source revision.")
    ] = None,
    change_request: ChangeRequestOption = None,
    strategy: StrategyOption = None,
) -> None:
    """Run the full pipeline: checkout, build, test, scan, push, deploy, verify."""
    from shipline.pipeline import ConfigError

    config = _load_config(project)
    _apply_strategy_override(config, strategy)
    _configure_project_logging(project)
    context = _build_context(config, project, branch, build_number, revision, change_request)

    console.print(
        f"[bold]{config.name}[/bold] {context.image_reference} → "
        f"[bold]{context.target_environment}[/bold]"
    )

    try:
        report = asyncio.run(_run_pipeline_async(config, context))
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _print_report(report, config.name)

    if report.succeeded:
        console.print(f"[green]✓[/green] [bold]{report.summary()}[/bold]")
        return

    console.print(f"[red]✗[/red] [bold]{report.summary()}[/bold]")
    raise typer.Exit(1)


@app.command()
def doctor(project: ProjectOption = Path()) -> None:
    """Check that the configured pipeline's tools are installed."""
    from shipline.collaborators import required_tools
    from shipline.pipeline.config import CONFIG_FILENAME, ConfigError, load_pipeline_config

    console.print("[bold]Shipline Doctor[/bold]")
    console.print()

    all_ok = True
    config = None
    if (project / CONFIG_FILENAME).exists():
        try:
            config = load_pipeline_config(project)
            console.print(f"  [green]✓[/green] {CONFIG_FILENAME}: {config.name}")
            console.print(f"  [green]✓[/green] Strategy: {config.deploy.strategy}")
        except ConfigError as e:
            console.print(f"  [red]✗[/red] Config error: {e}")
            all_ok = False
    else:
        console.print(f"  [dim]○[/dim] {CONFIG_FILENAME}: Not found (checking default tools)")

    from shipline.pipeline.config import create_default_config

    tools = required_tools(config or create_default_config("unnamed"))
    console.print()
    console.print("[bold]Tools[/bold]")
    for tool in tools:
        location = shutil.which(tool)
        if location:
            console.print(f"  [green]✓[/green] {tool}: {location}")
        else:
            console.print(f"  [red]✗[/red] {tool}: not found on PATH")
            all_ok = False

    console.print()
    if all_ok:
        console.print("[green]All checks passed![/green]")
    else:
        console.print("[yellow]Some checks failed.[/yellow]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
