"""HTTP webhook receiver for Drone build events."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import re
import threading
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping, Sequence
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from dronecollector.config import Config
from dronecollector.handler import (
    DroneClient,
    LogLine,
    Logs,
    Traces,
    WebhookEvent,
    handle_event,
)

_log = logging.getLogger(__name__)

_ALGORITHMS = {
    "hmac-sha256": hashlib.sha256,
    "hmac-sha1": hashlib.sha1,
}
DEFAULT_ALGORITHM = "hmac-sha256"
DEFAULT_SIGNED_HEADERS = ("date",)
REQUEST_TARGET = "(request-target)"

_SIGNATURE_FIELD = re.compile(r'(\w+)="([^"]*)"')


class SignatureError(Exception):
    """Raised when a request's signature cannot be accepted."""

    status = 400


class SignatureParseError(SignatureError):
    """Raised when a request carries no readable signature."""

    status = 400


class SignatureNotValidError(SignatureError):
    """Raised when a request's signature does not match."""

    status = 403

    def __init__(self, message: str = "signature is not valid") -> None:
        super().__init__(message)


def _lower_headers(headers: Any) -> dict[str, str]:
    lowered: dict[str, str] = {}
    for name, value in headers.items():
        lowered.setdefault(name.lower(), value)
    return lowered


def _signing_string(
    headers: Mapping[str, str], method: str, path: str, signed: Sequence[str]
) -> str:
    lines = []
    for name in signed:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {path}")
            continue
        value = headers.get(name)
        if value is None:
            raise SignatureError(f"missing required header {name}")
        lines.append(f"{name}: {value}")
    return "\n".join(lines)


def _compute(
    algorithm: str, secret: str, headers: Mapping[str, str],
    method: str, path: str, signed: Sequence[str],
) -> str:
    digest = hmac.new(
        secret.encode(),
        _signing_string(headers, method, path, signed).encode(),
        _ALGORITHMS[algorithm],
    ).digest()
    return base64.b64encode(digest).decode()


def sign_request(
    headers: Mapping[str, str], method: str, path: str, key_id: str, secret: str
) -> dict[str, str]:
    """Return a copy of headers with an HMAC-SHA256 Signature header added."""
    lowered = _lower_headers(headers)
    signature = _compute(
        DEFAULT_ALGORITHM, secret, lowered, method, path, DEFAULT_SIGNED_HEADERS
    )
    signed = dict(headers)
    signed["Signature"] = (
        f'keyId="{key_id}",algorithm="{DEFAULT_ALGORITHM}",'
        f'headers="{" ".join(DEFAULT_SIGNED_HEADERS)}",signature="{signature}"'
    )
    return signed


def _parse_signature(headers: Mapping[str, str]) -> dict[str, str]:
    raw = headers.get("signature")
    if raw is None:
        auth = headers.get("authorization", "")
        if not auth.startswith("Signature "):
            raise SignatureParseError("no signature header found")
        raw = auth[len("Signature "):]
    fields = dict(_SIGNATURE_FIELD.findall(raw))
    if not fields.get("keyId"):
        raise SignatureParseError("missing keyId")
    if not fields.get("signature"):
        raise SignatureParseError("missing signature")
    algorithm = fields.get("algorithm", DEFAULT_ALGORITHM)
    if algorithm not in _ALGORITHMS:
        raise SignatureParseError(f"unknown algorithm {algorithm}")
    fields["algorithm"] = algorithm
    fields.setdefault("headers", " ".join(DEFAULT_SIGNED_HEADERS))
    return fields


def verify_signature(headers: Any, method: str, path: str, secret: str) -> str:
    """Check the request's HTTP signature against secret.

    Returns the key id of a valid signature; raises SignatureParseError
    when the signature cannot be read and SignatureNotValidError when it
    does not match.
    """
    lowered = _lower_headers(headers)
    try:
        fields = _parse_signature(lowered)
    except SignatureParseError as exc:
        raise SignatureParseError(f"error parsing signature: {exc}") from exc

    signed = [name.lower() for name in fields["headers"].split()]
    if "date" not in signed:
        raise SignatureNotValidError()
    try:
        expected = _compute(
            fields["algorithm"], secret, lowered, method, path, signed
        )
    except SignatureError as exc:
        raise SignatureNotValidError() from exc
    if not hmac.compare_digest(expected, fields["signature"]):
        raise SignatureNotValidError()
    return fields["keyId"]


class HTTPDroneClient:
    """Fetches step logs from a Drone server's REST API."""

    def __init__(self, host: str, token: str, timeout: float = 30.0) -> None:
        self.host = host.rstrip("/")
        self._token = token
        self.timeout = timeout

    def logs(
        self, namespace: str, name: str, build: int, stage: int, step: int
    ) -> list[LogLine]:
        """Return the output lines of one step."""
        url = (
            f"{self.host}/api/repos/{urllib.parse.quote(namespace, safe='')}/"
            f"{urllib.parse.quote(name, safe='')}/builds/{build}/logs/{stage}/{step}"
        )
        request = urllib.request.Request(
            url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/json",
            },
        )
        with urllib.request.urlopen(request, timeout=self.timeout) as response:
            data = json.load(response)
        return [
            LogLine(
                number=item.get("pos") or 0,
                message=item.get("out") or "",
                timestamp=item.get("time") or 0,
            )
            for item in data or []
        ]


def _parse_endpoint(endpoint: str) -> tuple[str, int]:
    host, _, port = endpoint.rpartition(":")
    host = host.strip("[]")
    return host, int(port) if port else 80


def _make_handler(receiver: DroneReceiver) -> type[BaseHTTPRequestHandler]:
    class _WebhookHandler(BaseHTTPRequestHandler):
        def _serve(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else b""
            status, text = receiver.handle_request(
                self.headers, self.command, self.path, body
            )
            payload = text.encode()
            self.send_response(status)
            if payload:
                self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _serve

        def log_message(self, format: str, *args: Any) -> None:
            receiver._logger.debug(format, *args)

    return _WebhookHandler


class DroneReceiver:
    """Receives Drone webhooks and forwards the resulting traces and logs."""

    def __init__(
        self,
        config: Config,
        client: DroneClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.client: DroneClient = client or HTTPDroneClient(
            config.drone.host, config.drone.token
        )
        self.traces_consumer: Callable[[Traces], Any] | None = None
        self.logs_consumer: Callable[[Logs], Any] | None = None
        self._logger = logger or _log
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self, host: Any = None) -> None:
        """Start serving webhooks in a background thread."""
        self._logger.info(
            "Starting Drone webhook server on %s%s",
            self.config.endpoint,
            self.config.path,
        )
        try:
            self._server = ThreadingHTTPServer(
                _parse_endpoint(self.config.endpoint), _make_handler(self)
            )
        except (OSError, ValueError) as exc:
            self._logger.error("Server closed with error: %s", exc)
            return
        self._server.daemon_threads = True
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="drone-webhook", daemon=True
        )
        self._thread.start()

    def shutdown(self) -> None:
        """Stop the server and wait for it to finish."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def handle_request(
        self, headers: Any, method: str, path: str, body: bytes
    ) -> tuple[int, str]:
        """Process one webhook request; return the HTTP status and body text."""
        try:
            verify_signature(headers, method, path, self.config.secret)
        except SignatureError as exc:
            self._logger.info("couldn't verify request signature: %s", exc)
            return exc.status, ""

        try:
            event = WebhookEvent.from_dict(json.loads(body))
        except (ValueError, TypeError) as exc:
            self._logger.error("error unmarshalling the request body: %s", exc)
            return 400, f"{exc}\n"

        traces, logs = handle_event(
            event, self.config, self.client, self._logger.getChild("handler")
        )

        if self.traces_consumer is not None and traces is not None:
            try:
                self.traces_consumer(traces)
            except Exception as exc:
                self._logger.error("Failed to consume traces: %s", exc)
        if self.logs_consumer is not None and logs is not None:
            try:
                self.logs_consumer(logs)
            except Exception as exc:
                self._logger.error("Failed to consume logs: %s", exc)
        return 200, ""