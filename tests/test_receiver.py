import json
import socket
import threading
import urllib.error
import urllib.request
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from dronecollector.config import Config, create_default_config
from dronecollector.handler import LogLine
from dronecollector.receiver import (
    DroneReceiver,
    HTTPDroneClient,
    SignatureNotValidError,
    SignatureParseError,
    sign_request,
    verify_signature,
)

DATE = "Thu, 08 Dec 2023 10:31:40 GMT"

EVENT = {
    "action": "push",
    "repo": {
        "id": 1,
        "slug": "repoA",
        "default_branch": "main",
        "build": {
            "id": 2,
            "finished": 12345678,
            "stages": [
                {
                    "id": 1,
                    "name": "stageA",
                    "steps": [
                        {
                            "id": 1,
                            "number": 1,
                            "name": "stepA",
                            "status": "success",
                            "started": 1000,
                            "stopped": 1001,
                        }
                    ],
                }
            ],
        },
    },
    "system": {"host": "host"},
}


class FakeClient:
    def __init__(self):
        self.calls = []

    def logs(self, namespace, name, build, stage, step):
        self.calls.append((namespace, name, build, stage, step))
        return [LogLine(number=1, message="message", timestamp=123456)]


def _config():
    config = create_default_config()
    config.secret = "secret"
    config.repos = {"repoA": ["main"]}
    return config


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_verify_valid_signature():
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    assert verify_signature(headers, "POST", "/", "secret") == "keyID"


def test_verify_invalid_signature():
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    with pytest.raises(SignatureNotValidError) as info:
        verify_signature(headers, "POST", "/", "placeholder")
    assert info.value.status == 403


def test_verify_unsigned_request():
    with pytest.raises(SignatureParseError) as info:
        verify_signature({"Date": DATE}, "POST", "/", "secret")
    assert info.value.status == 400


def test_verify_detects_tampered_date():
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    headers["Date"] = "Fri, 09 Dec 2023 10:31:40 GMT"
    with pytest.raises(SignatureNotValidError):
        verify_signature(headers, "POST", "/", "secret")


def test_verify_is_case_insensitive_on_header_names():
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    lowered = {name.lower(): value for name, value in headers.items()}
    assert verify_signature(lowered, "POST", "/", "secret") == "keyID"


def test_signature_header_format():
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    assert headers["Signature"].startswith(
        'keyId="keyID",algorithm="hmac-sha256",headers="date",signature="'
    )
    assert headers["Date"] == DATE


def test_new_receiver_with_default_config():
    config = create_default_config()
    receiver = DroneReceiver(config)
    assert receiver.config is config
    assert isinstance(receiver.client, HTTPDroneClient)
    assert receiver.traces_consumer is None


def test_new_receiver_with_user_config():
    config = Config(endpoint="localhost:8080", secret="secret")
    receiver = DroneReceiver(config)
    assert receiver.config.endpoint == "localhost:8080"


def test_handle_request_produces_traces_and_logs():
    client = FakeClient()
    receiver = DroneReceiver(_config(), client=client)
    traces, logs = [], []
    receiver.traces_consumer = traces.append
    receiver.logs_consumer = logs.append
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    status, _ = receiver.handle_request(
        headers, "POST", "/", json.dumps(EVENT).encode()
    )
    assert status == 200
    assert traces[0].span_count() == 3
    assert logs[0].record_count() == 1
    assert client.calls == [("", "", 0, 0, 1)]


def test_handle_request_repo_not_enabled():
    config = _config()
    config.repos = {"other": ["main"]}
    receiver = DroneReceiver(config, client=FakeClient())
    traces = []
    receiver.traces_consumer = traces.append
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    status, _ = receiver.handle_request(
        headers, "POST", "/", json.dumps(EVENT).encode()
    )
    assert status == 200
    assert traces == []


def test_handle_request_rejects_bad_signature():
    receiver = DroneReceiver(_config(), client=FakeClient())
    traces = []
    receiver.traces_consumer = traces.append
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "placeholder")
    status, _ = receiver.handle_request(
        headers, "POST", "/", json.dumps(EVENT).encode()
    )
    assert status == 403
    assert traces == []


def test_handle_request_rejects_bad_json():
    receiver = DroneReceiver(_config(), client=FakeClient())
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    status, text = receiver.handle_request(headers, "POST", "/", b"{not json")
    assert status == 400
    assert text


def test_consumer_failure_does_not_fail_request():
    receiver = DroneReceiver(_config(), client=FakeClient())

    def failing(_):
        raise RuntimeError("boom")

    receiver.traces_consumer = failing
    headers = sign_request({"Date": DATE}, "POST", "/", "keyID", "secret")
    status, _ = receiver.handle_request(
        headers, "POST", "/", json.dumps(EVENT).encode()
    )
    assert status == 200


def test_live_server_round_trip():
    config = _config()
    config.endpoint = f"127.0.0.1:{_free_port()}"
    receiver = DroneReceiver(config, client=FakeClient())
    traces = []
    receiver.traces_consumer = traces.append
    receiver.start(None)
    try:
        url = f"http://{config.endpoint}{config.path}"
        headers = sign_request(
            {"Date": DATE, "Content-Type": "application/json"},
            "POST", config.path, "keyID", "secret",
        )
        request = urllib.request.Request(
            url, data=json.dumps(EVENT).encode(), headers=headers, method="POST"
        )
        with urllib.request.urlopen(request, timeout=5) as response:
            assert response.status == 200
        assert traces[0].span_count() == 3

        bad = urllib.request.Request(
            url, data=b"{}", headers={"Date": DATE}, method="POST"
        )
        with pytest.raises(urllib.error.HTTPError) as info:
            urllib.request.urlopen(bad, timeout=5)
        assert info.value.code == 400
    finally:
        receiver.shutdown()


class _LogsHandler(BaseHTTPRequestHandler):
    seen = []

    def do_GET(self):
        type(self).seen.append((self.path, self.headers.get("Authorization")))
        if self.path.endswith("/9"):
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        payload = json.dumps([{"pos": 1, "out": "hello", "time": 3}]).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def drone_server():
    _LogsHandler.seen = []
    server = ThreadingHTTPServer(("127.0.0.1", 0), _LogsHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()
    thread.join()


def test_http_client_fetches_logs(drone_server):
    client = HTTPDroneClient(drone_server + "/", "token")
    lines = client.logs("org", "repo", 5, 2, 3)
    assert lines == [LogLine(number=1, message="hello", timestamp=3)]
    assert _LogsHandler.seen == [
        ("/api/repos/org/repo/builds/5/logs/2/3", "Bearer token")
    ]


def test_http_client_raises_on_error_status(drone_server):
    client = HTTPDroneClient(drone_server, "token")
    with pytest.raises(urllib.error.HTTPError) as info:
        client.logs("org", "repo", 5, 2, 9)
    assert info.value.code == 404