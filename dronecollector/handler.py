"""Turn Drone webhook events into traces and logs."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from dronecollector import semconv
from dronecollector.config import Config
from dronecollector.metrics import timestamp_now
from dronecollector.traceutils import (
    EMPTY_SPAN_ID,
    Span,
    new_span_id,
    new_trace_id,
    set_status,
)

SCOPE_NAME = "dronereceiver"
SCOPE_VERSION = "0.1.0"
SERVICE_NAME = "drone"
SERVICE_VERSION = "0.1.0"

_NANOS_PER_SECOND = 1_000_000_000

_log = logging.getLogger(__name__)


@dataclass
class Step:
    """A single step of a stage."""

    id: int = 0
    stage_id: int = 0
    number: int = 0
    name: str = ""
    status: str = ""
    error: str = ""
    exit_code: int = 0
    started: int = 0
    stopped: int = 0
    version: int = 0
    image: str = ""


@dataclass
class Stage:
    """A pipeline stage of a build."""

    id: int = 0
    repo_id: int = 0
    build_id: int = 0
    number: int = 0
    name: str = ""
    kind: str = ""
    type: str = ""
    status: str = ""
    error: str = ""
    exit_code: int = 0
    machine: str = ""
    os: str = ""
    arch: str = ""
    started: int = 0
    stopped: int = 0
    created: int = 0
    updated: int = 0
    version: int = 0
    depends_on: list[str] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)


@dataclass
class Build:
    """A Drone build with its stages."""

    id: int = 0
    repo_id: int = 0
    trigger: str = ""
    number: int = 0
    parent: int = 0
    status: str = ""
    error: str = ""
    event: str = ""
    action: str = ""
    link: str = ""
    timestamp: int = 0
    title: str = ""
    message: str = ""
    before: str = ""
    after: str = ""
    ref: str = ""
    source_repo: str = ""
    source: str = ""
    target: str = ""
    author_login: str = ""
    author_name: str = ""
    author_email: str = ""
    author_avatar: str = ""
    sender: str = ""
    started: int = 0
    finished: int = 0
    created: int = 0
    updated: int = 0
    version: int = 0
    stages: list[Stage] = field(default_factory=list)


@dataclass
class Repo:
    """A repository known to Drone."""

    id: int = 0
    uid: str = ""
    user_id: int = 0
    namespace: str = ""
    name: str = ""
    slug: str = ""
    scm: str = ""
    http_url: str = ""
    ssh_url: str = ""
    link: str = ""
    branch: str = ""
    private: bool = False
    visibility: str = ""
    active: bool = False
    config_path: str = ""
    trusted: bool = False
    protected: bool = False
    timeout: int = 0
    created: int = 0
    updated: int = 0
    version: int = 0


@dataclass
class LogLine:
    """One line of a step's output."""

    number: int = 0
    message: str = ""
    timestamp: int = 0


_REPO_KEYS = {
    "id": "id",
    "uid": "uid",
    "user_id": "user_id",
    "namespace": "namespace",
    "name": "name",
    "slug": "slug",
    "scm": "scm",
    "git_http_url": "http_url",
    "git_ssh_url": "ssh_url",
    "link": "link",
    "default_branch": "branch",
    "private": "private",
    "visibility": "visibility",
    "active": "active",
    "config_path": "config_path",
    "trusted": "trusted",
    "protected": "protected",
    "timeout": "timeout",
    "created": "created",
    "updated": "updated",
    "version": "version",
}

_BUILD_KEYS = {
    name: name
    for name in (
        "id", "repo_id", "trigger", "number", "parent", "status", "error",
        "event", "action", "link", "timestamp", "title", "message", "before",
        "after", "ref", "source_repo", "source", "target", "author_login",
        "author_name", "author_email", "author_avatar", "sender", "started",
        "finished", "created", "updated", "version",
    )
}

_STAGE_KEYS = {
    name: name
    for name in (
        "id", "repo_id", "build_id", "number", "name", "kind", "type",
        "status", "error", "exit_code", "machine", "os", "arch", "started",
        "stopped", "created", "updated", "version", "depends_on",
    )
}

_STEP_KEYS = {
    "id": "id",
    "step_id": "stage_id",
    "number": "number",
    "name": "name",
    "status": "status",
    "error": "error",
    "exit_code": "exit_code",
    "started": "started",
    "stopped": "stopped",
    "version": "version",
    "image": "image",
}


def _ensure_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected an object for {what}, got {data!r}")
    return data


def _values(data: Mapping[str, Any], keys: Mapping[str, str]) -> dict[str, Any]:
    return {name: data[key] for key, name in keys.items() if data.get(key) is not None}


def _ensure_list(data: Any, what: str) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"expected a list for {what}, got {data!r}")
    return data


def _step_from_dict(data: Any) -> Step:
    return Step(**_values(_ensure_mapping(data, "step"), _STEP_KEYS))


def _stage_from_dict(data: Any) -> Stage:
    data = _ensure_mapping(data, "stage")
    steps = [_step_from_dict(item) for item in _ensure_list(data.get("steps"), "steps")]
    return Stage(**_values(data, _STAGE_KEYS), steps=steps)


def _build_from_dict(data: Any) -> Build:
    data = _ensure_mapping(data, "build")
    stages = [
        _stage_from_dict(item) for item in _ensure_list(data.get("stages"), "stages")
    ]
    return Build(**_values(data, _BUILD_KEYS), stages=stages)


@dataclass
class WebhookEvent:
    """A webhook notification sent by the Drone server."""

    action: str = ""
    repo: Repo | None = None
    build: Build | None = None
    system_proto: str = ""
    system_host: str = ""
    system_link: str = ""
    system_version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WebhookEvent:
        """Build an event from a decoded webhook JSON body."""
        data = _ensure_mapping(data, "event")
        repo = build = None
        repo_data = data.get("repo")
        if repo_data is not None:
            repo_data = _ensure_mapping(repo_data, "repo")
            repo = Repo(**_values(repo_data, _REPO_KEYS))
            if repo_data.get("build") is not None:
                build = _build_from_dict(repo_data["build"])
        system = _ensure_mapping(data.get("system") or {}, "system")
        return cls(
            action=data.get("action") or "",
            repo=repo,
            build=build,
            system_proto=system.get("proto") or "",
            system_host=system.get("host") or "",
            system_link=system.get("link") or "",
            system_version=system.get("version") or "",
        )


class DroneClient(Protocol):
    """The part of the Drone API the handler needs."""

    def logs(
        self, namespace: str, name: str, build: int, stage: int, step: int
    ) -> Sequence[LogLine]:
        """Return the output lines of a step."""


@dataclass
class ScopeSpans:
    """Spans sharing one instrumentation scope."""

    scope_name: str = ""
    scope_version: str = ""
    spans: list[Span] = field(default_factory=list)


@dataclass
class ResourceSpans:
    """Spans produced by one resource."""

    attributes: dict[str, Any] = field(default_factory=dict)
    scope_spans: list[ScopeSpans] = field(default_factory=list)


@dataclass
class Traces:
    """A batch of spans grouped by resource."""

    resource_spans: list[ResourceSpans] = field(default_factory=list)

    def span_count(self) -> int:
        """Return the number of spans in the batch."""
        return sum(
            len(scope.spans) for rs in self.resource_spans for scope in rs.scope_spans
        )


@dataclass
class LogRecord:
    """A single log record tied to a span."""

    trace_id: bytes
    span_id: bytes
    observed_timestamp: int
    timestamp: int
    body: str
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceLogs:
    """Log records produced by one resource."""

    attributes: dict[str, Any] = field(default_factory=dict)
    log_records: list[LogRecord] = field(default_factory=list)


@dataclass
class Logs:
    """A batch of log records grouped by resource."""

    resource_logs: list[ResourceLogs] = field(default_factory=list)

    def record_count(self) -> int:
        """Return the number of log records in the batch."""
        return sum(len(rl.log_records) for rl in self.resource_logs)


def _seconds_to_nanos(seconds: int) -> int:
    return seconds * _NANOS_PER_SECOND


def handle_event(
    event: WebhookEvent,
    config: Config,
    client: DroneClient,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> tuple[Traces | None, Logs | None]:
    """Build traces and logs for a finished build of an enabled repo and branch.

    Returns (None, None) when the event is to be skipped.
    """
    logger = logger or _log
    logger.debug("Got request")

    repo = event.repo
    build = event.build
    if repo is None or build is None:
        logger.warning("no build info provided from the webhook event")
        return None, None

    if build.finished == 0:
        logger.debug("build hasn't finished yet")
        return None, None

    allowed_branches = config.repos.get(repo.slug)
    if allowed_branches is None:
        logger.warning("repo not enabled, skipping: %s", repo.slug)
        return None, None

    if repo.branch not in allowed_branches:
        logger.warning("branch not enabled, skipping: %s", repo.branch)
        return None, None

    traces = Traces()
    logs = Logs()

    resource_spans = ResourceSpans(
        attributes={
            semconv.ATTRIBUTE_SERVICE_VERSION: SERVICE_VERSION,
            semconv.ATTRIBUTE_SERVICE_NAME: SERVICE_NAME,
            semconv.ATTRIBUTE_GIT_REPO_NAME: repo.slug,
            semconv.ATTRIBUTE_GIT_BRANCH_NAME: repo.branch,
        }
    )
    traces.resource_spans.append(resource_spans)
    build_scope = ScopeSpans(scope_name=SCOPE_NAME, scope_version=SCOPE_VERSION)
    resource_spans.scope_spans.append(build_scope)

    build_span = Span(
        trace_id=new_trace_id(),
        span_id=new_span_id(),
        parent_span_id=EMPTY_SPAN_ID,
    )
    build_scope.spans.append(build_span)
    attrs = build_span.attributes
    attrs[semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND] = (
        semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_BUILD
    )
    attrs[semconv.ATTRIBUTE_DRONE_WORKFLOW_EVENT] = build.event
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_NUMBER] = build.number
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_ID] = build.id
    attrs[semconv.ATTRIBUTE_DRONE_WORKFLOW_TITLE] = build.title
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_MESSAGE] = build.message

    set_status(build.status, build_span)

    build_span.start_timestamp = _seconds_to_nanos(build.created)
    build_span.end_timestamp = _seconds_to_nanos(build.finished)

    attrs[semconv.ATTRIBUTE_CI_VENDOR] = semconv.ATTRIBUTE_CI_VENDOR_DRONE
    attrs[semconv.ATTRIBUTE_CI_VERSION] = event.system_version

    # The scm field is usually empty; fall back to git.
    vcs_type = repo.scm or semconv.ATTRIBUTE_VCS_TYPE_GIT
    attrs[semconv.ATTRIBUTE_VCS_TYPE] = vcs_type
    if vcs_type == semconv.ATTRIBUTE_VCS_TYPE_GIT:
        attrs[semconv.ATTRIBUTE_GIT_HTTP_URL] = repo.http_url
        attrs[semconv.ATTRIBUTE_GIT_SSH_URL] = repo.ssh_url
        attrs[semconv.ATTRIBUTE_GIT_WWW_URL] = repo.link

    attrs[semconv.ATTRIBUTE_DRONE_BUILD_AFTER] = build.after
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_BEFORE] = build.before
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_LINK] = build.link
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_REF] = build.ref
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_SOURCE] = build.source
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_TARGET] = build.target
    attrs[semconv.ATTRIBUTE_DRONE_BUILD_PARENT] = build.parent

    for stage in build.stages:
        stage_scope = ScopeSpans()
        resource_spans.scope_spans.append(stage_scope)
        stage_span = Span(
            name=stage.name,
            trace_id=build_span.trace_id,
            span_id=new_span_id(),
            parent_span_id=build_span.span_id,
            start_timestamp=_seconds_to_nanos(stage.started),
            end_timestamp=_seconds_to_nanos(stage.stopped),
        )
        stage_scope.spans.append(stage_span)
        stage_attrs = stage_span.attributes
        stage_attrs[semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND] = (
            semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_STAGE
        )
        stage_attrs[semconv.ATTRIBUTE_SERVICE_NAME] = stage.name
        set_status(stage.status, stage_span)
        stage_attrs[semconv.ATTRIBUTE_DRONE_STAGE_NUMBER] = int(stage.number)
        stage_attrs[semconv.ATTRIBUTE_DRONE_STAGE_ID] = stage.id
        stage_attrs[semconv.ATTRIBUTE_DRONE_STAGE_NAME] = stage.name

        for step in stage.steps:
            if step.status == "skipped":
                continue

            step_span = Span(
                name=step.name,
                trace_id=stage_span.trace_id,
                span_id=new_span_id(),
                parent_span_id=stage_span.span_id,
                start_timestamp=_seconds_to_nanos(step.started),
                end_timestamp=_seconds_to_nanos(step.stopped),
            )
            stage_scope.spans.append(step_span)
            step_attrs = step_span.attributes
            step_attrs[semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND] = (
                semconv.ATTRIBUTE_DRONE_WORKFLOW_ITEM_KIND_STEP
            )
            step_attrs[semconv.ATTRIBUTE_DRONE_STAGE_NAME] = stage.name
            step_attrs[semconv.ATTRIBUTE_DRONE_STAGE_ID] = int(step.stage_id)
            step_attrs[semconv.ATTRIBUTE_DRONE_STEP_NAME] = step.name
            step_attrs[semconv.ATTRIBUTE_DRONE_STEP_ID] = step.id
            step_attrs[semconv.ATTRIBUTE_DRONE_STEP_NUMBER] = int(step.number)
            set_status(step.status, step_span)

            try:
                step_logs = generate_logs(
                    client, repo, build, stage, step,
                    build_span.trace_id, step_span.span_id,
                )
            except Exception:
                logger.exception("error retrieving logs")
                continue
            logs.resource_logs.extend(step_logs.resource_logs)

    return traces, logs


def generate_logs(
    client: DroneClient,
    repo: Repo,
    build: Build,
    stage: Stage,
    step: Step,
    trace_id: bytes,
    span_id: bytes,
) -> Logs:
    """Fetch a step's output and turn each line into a log record.

    Lines sharing a timestamp are spread one nanosecond apart to keep
    their order.
    """
    lines = client.logs(repo.namespace, repo.name, int(build.number), stage.number, step.number)

    resource_logs = ResourceLogs()
    now = timestamp_now()
    previous = 0
    delta = 0
    for line in lines:
        if line.timestamp == previous:
            delta += 1
        else:
            delta = 0
            previous = line.timestamp
        resource_logs.log_records.append(
            LogRecord(
                trace_id=trace_id,
                span_id=span_id,
                observed_timestamp=now,
                timestamp=_seconds_to_nanos(step.started + line.timestamp) + delta,
                body=line.message,
                attributes={
                    semconv.ATTRIBUTE_DRONE_STAGE_NAME: stage.name,
                    semconv.ATTRIBUTE_DRONE_STEP_NAME: step.name,
                    semconv.ATTRIBUTE_DRONE_BUILD_NUMBER: build.number,
                },
            )
        )
    return Logs(resource_logs=[resource_logs])