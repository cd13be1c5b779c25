"""Configuration of the Drone receiver and its metrics."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

TYPE = "dronereceiver"
SCOPE_NAME = "dronecollector.receiver.dronereceiver"

DEFAULT_BIND_ENDPOINT = "0.0.0.0:3333"
DEFAULT_PATH = "/drone/webhook"


class ConfigError(ValueError):
    """Raised when a configuration is invalid."""


class StabilityLevel(enum.Enum):
    """Stability level of a component's signal support."""

    UNDEFINED = "Undefined"
    UNMAINTAINED = "Unmaintained"
    DEPRECATED = "Deprecated"
    DEVELOPMENT = "Development"
    ALPHA = "Alpha"
    BETA = "Beta"
    STABLE = "Stable"


LOGS_STABILITY = StabilityLevel.DEVELOPMENT
TRACES_STABILITY = StabilityLevel.DEVELOPMENT
METRICS_STABILITY = StabilityLevel.DEVELOPMENT


@dataclass
class DBConfig:
    """Connection details of the Drone database."""

    username: str = ""
    password: str = ""
    db: str = ""
    host: str = ""


@dataclass
class DroneConfig:
    """Access to the Drone server and its database."""

    token: str = ""
    host: str = ""
    database: DBConfig = field(default_factory=DBConfig)


@dataclass
class ControllerConfig:
    """Scheduling of the metrics scraper."""

    collection_interval: timedelta = timedelta(minutes=1)
    initial_delay: timedelta = timedelta(seconds=1)
    timeout: timedelta = timedelta(0)


@dataclass
class MetricConfig:
    """Settings of a single metric."""

    enabled: bool = True
    enabled_set_by_user: bool = field(default=False, compare=False)


@dataclass
class MetricsConfig:
    """Settings of every metric the receiver produces."""

    builds_number: MetricConfig = field(default_factory=MetricConfig)
    repo_info: MetricConfig = field(default_factory=MetricConfig)
    restarts_total: MetricConfig = field(default_factory=MetricConfig)


@dataclass
class MetricsBuilderConfig:
    """Configuration of the metrics builder."""

    metrics: MetricsConfig = field(default_factory=MetricsConfig)


_METRIC_NAMES = ("builds_number", "repo_info", "restarts_total")


def default_metrics_config() -> MetricsConfig:
    """Return the default metric settings: every metric enabled."""
    return MetricsConfig(
        builds_number=MetricConfig(enabled=True),
        repo_info=MetricConfig(enabled=True),
        restarts_total=MetricConfig(enabled=True),
    )


def default_metrics_builder_config() -> MetricsBuilderConfig:
    """Return the default metrics builder configuration."""
    return MetricsBuilderConfig(metrics=default_metrics_config())


def _apply_metric_config(current: MetricConfig, data: Any) -> MetricConfig:
    if data is None:
        return current
    if not isinstance(data, Mapping):
        raise ConfigError(f"metric settings must be a mapping, got {data!r}")
    unknown = set(data) - {"enabled"}
    if unknown:
        raise ConfigError(f"unknown metric settings: {', '.join(sorted(unknown))}")
    if "enabled" not in data:
        return MetricConfig(enabled=current.enabled)
    enabled = data["enabled"]
    if not isinstance(enabled, bool):
        raise ConfigError(f"'enabled' must be a boolean, got {enabled!r}")
    return MetricConfig(enabled=enabled, enabled_set_by_user=True)


def load_metrics_builder_config(data: Mapping[str, Any] | None) -> MetricsBuilderConfig:
    """Build a metrics builder configuration from a mapping over the defaults."""
    config = default_metrics_builder_config()
    if not data:
        return config
    if not isinstance(data, Mapping):
        raise ConfigError(f"metrics builder settings must be a mapping, got {data!r}")
    unknown = set(data) - {"metrics"}
    if unknown:
        raise ConfigError(f"unknown settings: {', '.join(sorted(unknown))}")
    metrics = data.get("metrics") or {}
    if not isinstance(metrics, Mapping):
        raise ConfigError(f"'metrics' must be a mapping, got {metrics!r}")
    for name, value in metrics.items():
        if name not in _METRIC_NAMES:
            raise ConfigError(f"unknown metric: {name}")
        current = getattr(config.metrics, name)
        setattr(config.metrics, name, _apply_metric_config(current, value))
    return config


@dataclass
class Config:
    """Configuration of the Drone receiver."""

    controller: ControllerConfig = field(default_factory=ControllerConfig)
    metrics_builder: MetricsBuilderConfig = field(
        default_factory=default_metrics_builder_config
    )
    endpoint: str = DEFAULT_BIND_ENDPOINT
    tls_cert_file: str | None = None
    tls_key_file: str | None = None
    path: str = DEFAULT_PATH
    secret: str = ""
    drone: DroneConfig = field(default_factory=DroneConfig)
    repos: dict[str, list[str]] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ConfigError if the configuration is not usable."""
        if not self.drone.host:
            raise ConfigError("host must be defined")
        if not self.drone.token:
            raise ConfigError("token must be defined")
        if not self.secret:
            raise ConfigError("webhook secret must be defined")
        if not self.repos:
            raise ConfigError("repos must be defined")
        for repo, branches in self.repos.items():
            if not branches:
                raise ConfigError(
                    f"at least one branch must be defined for repo {repo}"
                )
            seen: set[str] = set()
            for branch in branches:
                if branch in seen:
                    raise ConfigError(
                        f"branch {branch} is duplicated for repo {repo}"
                    )
                seen.add(branch)


def create_default_config() -> Config:
    """Return the receiver's default configuration."""
    return Config(
        controller=ControllerConfig(),
        metrics_builder=default_metrics_builder_config(),
        endpoint=DEFAULT_BIND_ENDPOINT,
        path=DEFAULT_PATH,
        secret="",
    )