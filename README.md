# dronecollector

Turn Drone CI activity into telemetry.

`dronecollector` takes in Drone webhook events and turns each finished build
into a trace. The build is the root span, each stage is a child span and each
non-skipped step is a span under its stage. The output lines of every step
become log records tied to the step's span. A scraper reads the Drone
database and reports build counts, restart totals and the latest status of
each repository as metrics.

The package has no third-party dependencies.

## Installation

```
pip install dronecollector
```

To run the tests:

```
pip install "dronecollector[test]"
pytest
```

## Configuration

`dronecollector.config` holds the configuration dataclasses. Start from the
defaults and fill in the Drone connection, the webhook secret and the
repositories and branches to follow:

```python
from dronecollector.config import create_default_config

config = create_default_config()
config.drone.host = "http://localhost:8080"
config.drone.token = "token"
config.drone.database.host = "localhost"
config.drone.database.db = "drone"
config.secret = "secret"
config.repos = {"org/repo": ["main"]}
config.validate()  # raises ConfigError when something is missing
```

The webhook server listens on `0.0.0.0:3333` (`config.endpoint`) at
`/drone/webhook` (`config.path`) by default. `validate()` raises
`ConfigError` unless all of the following hold:

- the Drone host and token are set;
- the webhook secret is set;
- at least one repository is listed;
- every repository has at least one branch;
- no branch is listed twice for the same repository.

The scraper's schedule is in `config.controller` (`collection_interval`,
default one minute; `initial_delay`, default one second). Each metric can be
switched off in `config.metrics_builder`; `load_metrics_builder_config`
builds that section from a mapping such as
`{"metrics": {"repo_info": {"enabled": False}}}`.

## Receivers

`dronecollector.factory.new_factory()` returns a `ReceiverFactory`. To scrape
metrics, give the factory a `connect` callable that takes a PostgreSQL
connection string and returns a DB-API connection; a `client` to fetch step
logs may also be given, otherwise an `HTTPDroneClient` for the configured
host and token is used.

- `create_traces_receiver(settings, config, consumer)` returns the webhook
  receiver, which passes each `Traces` batch to the consumer.
- `create_logs_receiver(settings, config, consumer)` returns the same webhook
  receiver when given the same `Config` object. It is wrapped in a
  `SharedComponent`, so it is started once and shut down once, and it passes
  each `Logs` batch to the consumer.
- `create_metrics_receiver(settings, config, consumer)` returns a
  `ScraperReceiver`. Its `start()` connects to the database (retrying every
  second, raising `DatabaseTimeoutError` after 120 seconds), then scrapes on
  the configured schedule in a background thread and passes each `Metrics`
  batch to the consumer. The metrics are `builds_number`, `restarts_total`
  and `repo_info`.

`settings` is an optional mapping; its `logger` and `build_version` keys are
used when present. Consumers are plain callables.

## Webhook signatures

Webhook requests must carry an HTTP signature (`Signature` or
`Authorization: Signature ...` header) that covers the `Date` header and is
made with the configured secret, using `hmac-sha256` or `hmac-sha1`.
`dronecollector.receiver.verify_signature` checks one and returns its key id;
`sign_request` adds one to a set of headers. `DroneReceiver.handle_request`
returns:

- 400 when there is no signature or it cannot be parsed;
- 403 when the signature does not match;
- 400 when the body is not a valid event;
- 200 otherwise, after passing any traces and logs to the consumers.

## Handling an event directly

```python
from dronecollector.handler import WebhookEvent, handle_event

event = WebhookEvent.from_dict(payload)
traces, logs = handle_event(event, config, client)
```

`client` is anything with a
`logs(namespace, name, build, stage, step)` method returning `LogLine`
objects. `handle_event` returns `(None, None)` in any of these cases:

- the event carries no build;
- the build has not finished;
- the repository is not configured;
- the branch is not configured for that repository.

A step whose logs cannot be fetched still gets its span; the error is logged.
Log lines sharing a timestamp are spread one nanosecond apart to keep their
order.

## What the package does not do

- It has no command-line program; receivers are created and started from
  Python code.
- It ships no PostgreSQL driver. Without a `connect` callable the metrics
  receiver cannot reach the database and its `start()` ends in
  `DatabaseTimeoutError`.
- It does not export telemetry anywhere. Traces, logs and metrics are plain
  dataclasses handed to the consumers you supply.