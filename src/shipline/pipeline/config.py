"""Project configuration loading."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

CONFIG_FILENAME = "shipline.yaml"

# Default configuration values
DEFAULT_PORT = 8000
DEFAULT_VERIFY_DELAY = 10.0
DEFAULT_ROLLOUT_TIMEOUT = 300.0
DEFAULT_SEVERITY = "HIGH,CRITICAL"
DEFAULT_TEST_COMMAND = ["python", "-m", "pytest"]


class DeployStrategy(StrEnum):
    """Deployment strategy, chosen once in configuration."""

    DOCKER = "docker"
    KUBERNETES = "kubernetes"
    SWARM = "swarm"
    CLOUDRUN = "cloudrun"


class ConfigError(Exception):
    """Raised when pipeline configuration cannot be loaded or is invalid."""

    def __init__(self, reason: str, path: Path | None = None) -> None:
        self.path = path
        self.reason = reason
        where = f" at {path}" if path is not None else ""
        super().__init__(f"Invalid pipeline config{where}: {reason}")


@dataclass
class SourceConfig:
    """Where the source revision comes from.

    Attributes:
        repository: Git URL to clone for each run. When unset, the project
            directory itself is treated as the checked-out workspace.
        workdir: Parent directory for temporary clones.
    """

    repository: str | None = None
    workdir: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceConfig:
        return cls(repository=data.get("repository"), workdir=data.get("workdir"))


@dataclass
class ImageConfig:
    """Container image naming and registry settings.

    Registry URL and credential reference can be overridden with
    SHIPLINE_REGISTRY and SHIPLINE_CREDENTIAL.
    """

    name: str
    registry: str | None = None
    credential: str | None = None
    dockerfile: str = "Dockerfile"
    push_latest: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_name: str) -> ImageConfig:
        return cls(
            name=data.get("name") or default_name,
            registry=os.getenv("SHIPLINE_REGISTRY") or data.get("registry"),
            credential=os.getenv("SHIPLINE_CREDENTIAL") or data.get("credential"),
            dockerfile=data.get("dockerfile", "Dockerfile"),
            push_latest=bool(data.get("push_latest", True)),
        )


@dataclass
class AppConfig:
    """Application runtime settings."""

    service_name: str
    port: int = DEFAULT_PORT
    test_command: list[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_name: str) -> AppConfig:
        raw_command = data.get("test_command", DEFAULT_TEST_COMMAND)
        if isinstance(raw_command, str):
            test_command = shlex.split(raw_command)
        elif raw_command is None:
            test_command = []
        else:
            test_command = [str(part) for part in raw_command]

        port = _as_int(data.get("port", DEFAULT_PORT), "app.port")
        if not 1 <= port <= 65535:
            raise ConfigError(f"app.port must be between 1 and 65535, got {port}")

        return cls(
            service_name=data.get("service_name") or default_name,
            port=port,
            test_command=test_command,
        )


@dataclass
class DeployConfig:
    """Deployment target settings.

    Attributes:
        strategy: Which deployment target runs. Overridden by SHIPLINE_STRATEGY.
        replicas: Desired replica count passed to the target.
        rollout_timeout: Seconds to wait for a rolling update to finish.
        namespaces: Kubernetes namespace per environment.
        names: Explicit deployed resource name per environment.
        ports: Host port per environment for targets that publish one.
        region: Cloud region for managed services.
    """

    strategy: DeployStrategy = DeployStrategy.DOCKER
    replicas: int = 1
    rollout_timeout: float = DEFAULT_ROLLOUT_TIMEOUT
    namespaces: dict[str, str] = field(
        default_factory=lambda: {"production": "production", "staging": "staging"}
    )
    names: dict[str, str] = field(default_factory=dict)
    ports: dict[str, int] = field(default_factory=dict)
    region: str | None = None

    def resource_name(self, service_name: str, environment: str) -> str:
        """Name of the deployed container/service for an environment.

        Production uses the bare service name, other environments get the
        environment as a suffix unless an explicit name is configured.
        """
        if environment in self.names:
            return self.names[environment]
        if environment == "production":
            return service_name
        return f"{service_name}-{environment}"

    def deployment_name(self, service_name: str, environment: str) -> str:
        """Kubernetes Deployment name. Environments share it and differ by namespace."""
        return self.names.get(environment, service_name)

    def namespace(self, environment: str) -> str:
        return self.namespaces.get(environment, environment)

    def host_port(self, environment: str, app_port: int) -> int:
        """Host port an environment's container is published on.

        Production and staging can share one docker host, so unless a port is
        configured staging sits next to the app port instead of on it.
        """
        if environment in self.ports:
            return self.ports[environment]
        if environment == "production":
            return app_port
        return app_port + 1 if app_port < 65535 else app_port - 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployConfig:
        raw_strategy = os.getenv("SHIPLINE_STRATEGY") or data.get("strategy", "docker")
        try:
            strategy = DeployStrategy(str(raw_strategy).lower())
        except ValueError as e:
            choices = ", ".join(s.value for s in DeployStrategy)
            raise ConfigError(
                f"unknown deploy strategy '{raw_strategy}' (expected one of: {choices})"
            ) from e

        replicas = _as_int(data.get("replicas", 1), "deploy.replicas")
        if replicas < 1:
            raise ConfigError(f"deploy.replicas must be at least 1, got {replicas}")

        timeout = _as_float(
            data.get("rollout_timeout", DEFAULT_ROLLOUT_TIMEOUT), "deploy.rollout_timeout"
        )
        if timeout <= 0:
            raise ConfigError("deploy.rollout_timeout must be positive")

        ports: dict[str, int] = {}
        for environment, raw_port in dict(data.get("ports") or {}).items():
            port = _as_int(raw_port, f"deploy.ports.{environment}")
            if not 1 <= port <= 65535:
                raise ConfigError(
                    f"deploy.ports.{environment} must be between 1 and 65535, got {port}"
                )
            ports[str(environment)] = port

        defaults = cls()
        return cls(
            strategy=strategy,
            replicas=replicas,
            rollout_timeout=timeout,
            namespaces={**defaults.namespaces, **dict(data.get("namespaces") or {})},
            names=dict(data.get("names") or {}),
            ports=ports,
            region=data.get("region"),
        )


@dataclass
class VerifyConfig:
    """Post-deploy liveness check settings.

    The attempt count is fixed by the orchestrator; only the delay between
    attempts and the probed URLs are configurable.
    """

    delay: float = DEFAULT_VERIFY_DELAY
    timeout: float = 5.0
    urls: dict[str, str] = field(default_factory=dict)

    def url_for(self, environment: str, port: int) -> str:
        """Probe URL for an environment, defaulting to the local published port."""
        return self.urls.get(environment) or f"http://localhost:{port}/"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerifyConfig:
        delay = _as_float(
            os.getenv("SHIPLINE_VERIFY_DELAY") or data.get("delay", DEFAULT_VERIFY_DELAY),
            "verify.delay",
        )
        if delay < 0:
            raise ConfigError("verify.delay must not be negative")
        return cls(
            delay=delay,
            timeout=_as_float(data.get("timeout", 5.0), "verify.timeout"),
            urls=dict(data.get("urls") or {}),
        )


@dataclass
class ScanConfig:
    """Image vulnerability scan settings."""

    enabled: bool = True
    severity: str = DEFAULT_SEVERITY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanConfig:
        return cls(
            enabled=bool(data.get("enabled", True)),
            severity=data.get("severity", DEFAULT_SEVERITY),
        )


@dataclass
class NotifyConfig:
    """Run notification settings."""

    webhook_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotifyConfig:
        return cls(webhook_url=os.getenv("SHIPLINE_WEBHOOK_URL") or data.get("webhook_url"))


@dataclass
class PipelineConfig:
    """Configuration for a Shipline project."""

    name: str
    image: ImageConfig
    app: AppConfig
    version: int = 1
    source: SourceConfig = field(default_factory=SourceConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary containing config fields.

        Returns:
            PipelineConfig instance.

        Raises:
            ConfigError: If a value is missing or out of range.
        """
        name = data.get("name") or "unnamed"
        return cls(
            name=name,
            version=data.get("version", 1),
            image=ImageConfig.from_dict(dict(data.get("image") or {}), name),
            app=AppConfig.from_dict(dict(data.get("app") or {}), name),
            source=SourceConfig.from_dict(dict(data.get("source") or {})),
            deploy=DeployConfig.from_dict(dict(data.get("deploy") or {})),
            verify=VerifyConfig.from_dict(dict(data.get("verify") or {})),
            scan=ScanConfig.from_dict(dict(data.get("scan") or {})),
            notify=NotifyConfig.from_dict(dict(data.get("notify") or {})),
        )

    def verify_url(self, environment: str, app_port: int) -> str:
        """URL the verify stage probes for an environment."""
        return self.verify.url_for(environment, self.deploy.host_port(environment, app_port))


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def load_pipeline_config(project_path: Path) -> PipelineConfig:
    """Load pipeline configuration from shipline.yaml.

    Args:
        project_path: Path to the project root directory.

    Returns:
        PipelineConfig instance.

    Raises:
        ConfigError: If config cannot be loaded.
    """
    config_path = project_path / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError("File not found", config_path)

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError("Empty file", config_path)

        return PipelineConfig.from_dict(dict(data))
    except ConfigError as e:
        if e.path is None:
            raise ConfigError(e.reason, config_path) from e
        raise
    except Exception as e:
        raise ConfigError(str(e), config_path) from e


def create_default_config(
    name: str,
    strategy: DeployStrategy | str | None = None,
) -> PipelineConfig:
    """Create a default pipeline configuration.

    Args:
        name: Project name, also used as image and service name.
        strategy: Optional deployment strategy. Defaults to a single-host
            docker run.

    Returns:
        PipelineConfig with default values.
    """
    return PipelineConfig(
        name=name,
        image=ImageConfig(name=name),
        app=AppConfig(service_name=name),
        deploy=DeployConfig(strategy=DeployStrategy(strategy or DeployStrategy.DOCKER)),
    )
