"""Metrics produced by the Drone receiver and the builder that collects them."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from dronecollector import semconv
from dronecollector.config import SCOPE_NAME, MetricConfig, MetricsBuilderConfig

SCHEMA_VERSION = "1.9.0"

METRIC_TYPE_SUM = "sum"
AGGREGATION_TEMPORALITY_CUMULATIVE = "cumulative"


class WorkflowItemStatus(enum.Enum):
    """Values of the ci.workflow_item.status attribute."""

    SKIPPED = "skipped"
    BLOCKED = "blocked"
    DECLINED = "declined"
    WAITING_ON_DEPENDENCIES = "waiting_on_dependencies"
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    KILLED = "killed"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


def timestamp_now() -> int:
    """Return the current time in nanoseconds since the epoch."""
    return time.time_ns()


@dataclass
class NumberDataPoint:
    """An integer data point of a sum metric."""

    start_timestamp: int
    timestamp: int
    value: int
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class Metric:
    """A sum metric with its data points."""

    name: str
    description: str
    unit: str
    is_monotonic: bool
    type: str = METRIC_TYPE_SUM
    aggregation_temporality: str = AGGREGATION_TEMPORALITY_CUMULATIVE
    data_points: list[NumberDataPoint] = field(default_factory=list)


@dataclass
class Resource:
    """The entity that produced a set of metrics."""

    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceMetrics:
    """Metrics belonging to one resource and one instrumentation scope."""

    resource: Resource = field(default_factory=Resource)
    schema_version: str = SCHEMA_VERSION
    scope_name: str = SCOPE_NAME
    scope_version: str = ""
    metrics: list[Metric] = field(default_factory=list)


@dataclass
class Metrics:
    """A batch of metrics grouped by resource."""

    resource_metrics: list[ResourceMetrics] = field(default_factory=list)

    def data_point_count(self) -> int:
        """Return the number of data points across all metrics."""
        return sum(
            len(metric.data_points)
            for rm in self.resource_metrics
            for metric in rm.metrics
        )


ResourceMetricsOption = Callable[[ResourceMetrics], None]


def with_resource(resource: Resource) -> ResourceMetricsOption:
    """Option that sets a copy of the given resource on emitted metrics."""

    def apply(rm: ResourceMetrics) -> None:
        rm.resource = Resource(attributes=dict(resource.attributes))

    return apply


def with_start_time_override(start: int) -> ResourceMetricsOption:
    """Option that overrides the start time of every emitted data point."""

    def apply(rm: ResourceMetrics) -> None:
        for metric in rm.metrics:
            for point in metric.data_points:
                point.start_timestamp = start

    return apply


def _status_text(status: WorkflowItemStatus | str) -> str:
    if isinstance(status, WorkflowItemStatus):
        return status.value
    return str(status)


class _SumRecorder:
    """Accumulates data points of one sum metric between emissions."""

    def __init__(
        self,
        config: MetricConfig,
        name: str,
        description: str,
        unit: str,
        is_monotonic: bool,
    ) -> None:
        self._config = config
        self._name = name
        self._description = description
        self._unit = unit
        self._is_monotonic = is_monotonic
        self._points: list[NumberDataPoint] = []

    def record(
        self, start: int, ts: int, value: int, attributes: dict[str, Any]
    ) -> None:
        if not self._config.enabled:
            return
        self._points.append(NumberDataPoint(start, ts, value, attributes))

    def emit(self, into: list[Metric]) -> None:
        if not (self._config.enabled and self._points):
            return
        into.append(
            Metric(
                name=self._name,
                description=self._description,
                unit=self._unit,
                is_monotonic=self._is_monotonic,
                data_points=self._points,
            )
        )
        self._points = []


class MetricsBuilder:
    """Collects the receiver's metrics and emits them in batches."""

    def __init__(
        self,
        config: MetricsBuilderConfig,
        build_version: str = "",
        start_time: int | None = None,
    ) -> None:
        self.config = config
        self.build_version = build_version
        self.start_time = timestamp_now() if start_time is None else start_time
        self._buffer = Metrics()
        metrics = config.metrics
        self._builds_number = _SumRecorder(
            metrics.builds_number,
            "builds_number",
            "Number of builds.",
            "{build}",
            is_monotonic=False,
        )
        self._repo_info = _SumRecorder(
            metrics.repo_info,
            "repo_info",
            "Repo status.",
            "{repository}",
            is_monotonic=False,
        )
        self._restarts_total = _SumRecorder(
            metrics.restarts_total,
            "restarts_total",
            "Total number build restarts.",
            "{restart}",
            is_monotonic=True,
        )

    @staticmethod
    def _workflow_attributes(
        status: WorkflowItemStatus | str, repo_name: str, branch_name: str
    ) -> dict[str, Any]:
        return {
            semconv.ATTRIBUTE_CI_WORKFLOW_ITEM_STATUS: _status_text(status),
            semconv.ATTRIBUTE_GIT_REPO_NAME: repo_name,
            semconv.ATTRIBUTE_GIT_BRANCH_NAME: branch_name,
        }

    def record_builds_number_data_point(
        self,
        ts: int,
        val: int,
        status: WorkflowItemStatus | str,
        repo_name: str,
        branch_name: str,
    ) -> None:
        """Add a data point to the builds_number metric."""
        self._builds_number.record(
            self.start_time,
            ts,
            val,
            self._workflow_attributes(status, repo_name, branch_name),
        )

    def record_repo_info_data_point(
        self,
        ts: int,
        val: int,
        status: WorkflowItemStatus | str,
        repo_name: str,
        branch_name: str,
    ) -> None:
        """Add a data point to the repo_info metric."""
        self._repo_info.record(
            self.start_time,
            ts,
            val,
            self._workflow_attributes(status, repo_name, branch_name),
        )

    def record_restarts_total_data_point(self, ts: int, val: int) -> None:
        """Add a data point to the restarts_total metric."""
        self._restarts_total.record(self.start_time, ts, val, {})

    def emit_for_resource(self, *args: ResourceMetricsOption) -> None:
        """Move recorded metrics into the buffer under a new resource."""
        rm = ResourceMetrics(scope_version=self.build_version)
        for recorder in (self._builds_number, self._repo_info, self._restarts_total):
            recorder.emit(rm.metrics)
        for option in args:
            option(rm)
        if rm.metrics:
            self._buffer.resource_metrics.append(rm)

    def emit(self, *args: ResourceMetricsOption) -> Metrics:
        """Return all buffered metrics and start a fresh buffer."""
        self.emit_for_resource(*args)
        metrics, self._buffer = self._buffer, Metrics()
        return metrics

    def reset(self, start_time: int | None = None) -> None:
        """Restart the builder's start time, at now unless given."""
        self.start_time = timestamp_now() if start_time is None else start_time