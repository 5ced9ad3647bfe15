import io
import json
import socket
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from wsgiref.util import setup_testing_defaults

import pytest

from fhirgate.rules import FieldRule
from fhirgate.server import handle_proxy, main, make_app
from fhirgate.validator import Validator

PATIENT = {"resourceType": "Patient", "id": "pat1", "gender": "female"}


@pytest.fixture
def validator():
    return Validator(rules={"Patient": {"gender": FieldRule(allowed_values=["male", "female"])}})


@pytest.fixture
def no_proxy(monkeypatch):
    for name in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("no_proxy", "*")
    monkeypatch.setenv("NO_PROXY", "*")


def _upstream(status, payload):
    received = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers.get("Content-Length", 0))
            received.append((self.headers.get("Content-Type"), self.rfile.read(length)))
            self.send_response(status)
            self.send_header("Content-Type", "application/fhir+json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, received


@pytest.fixture
def upstream_factory(no_proxy):
    servers = []

    def start(status, payload):
        server, received = _upstream(status, payload)
        servers.append(server)
        host, port = server.server_address
        return f"http://{host}:{port}/fhir", received

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def test_echoes_valid_resource_without_upstream(validator):
    response = handle_proxy(validator, "POST", json.dumps(PATIENT).encode(), "")
    assert response.status == HTTPStatus.OK
    assert response.headers["Content-Type"] == "application/fhir+json"
    assert json.loads(response.body) == PATIENT


def test_rejects_non_post(validator):
    response = handle_proxy(validator, "PUT", json.dumps(PATIENT).encode(), "")
    assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
    assert response.body == b"Only POST allowed\n"


def test_rejects_invalid_json(validator):
    response = handle_proxy(validator, "POST", b"{invalid json", "")
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body == b"Invalid JSON\n"


def test_invalid_resource_gets_outcome(validator):
    body = json.dumps({**PATIENT, "gender": "robot"}).encode()
    response = handle_proxy(validator, "POST", body, "http://127.0.0.1:9/fhir")
    assert response.status == HTTPStatus.BAD_REQUEST
    outcome = json.loads(response.body)
    assert outcome["resourceType"] == "OperationOutcome"
    assert [issue["diagnostics"] for issue in outcome["issue"]] == [
        "Field gender has disallowed value"
    ]


def test_invalid_upstream_url(validator):
    response = handle_proxy(validator, "POST", json.dumps(PATIENT).encode(), "not a url")
    assert response.status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.body == b"Invalid FHIR_SERVER_URL\n"


def test_forwards_valid_resource(validator, upstream_factory):
    url, received = upstream_factory(HTTPStatus.CREATED, b'{"id":"x"}')
    body = json.dumps(PATIENT).encode()
    response = handle_proxy(validator, "POST", body, url)
    assert response.status == HTTPStatus.CREATED
    assert response.body == b'{"id":"x"}'
    assert response.headers["Content-Type"] == "application/fhir+json"
    assert received == [("application/fhir+json", body)]


def test_passes_upstream_error_status_through(validator, upstream_factory):
    url, _ = upstream_factory(HTTPStatus.UNPROCESSABLE_ENTITY, b'{"problem":true}')
    response = handle_proxy(validator, "POST", json.dumps(PATIENT).encode(), url)
    assert response.status == HTTPStatus.UNPROCESSABLE_ENTITY
    assert json.loads(response.body) == {"problem": True}


def test_unreachable_upstream_is_bad_gateway(validator, no_proxy):
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    url = f"http://127.0.0.1:{port}/fhir"
    response = handle_proxy(validator, "POST", json.dumps(PATIENT).encode(), url)
    assert response.status == HTTPStatus.BAD_GATEWAY
    assert response.body == b"Failed to forward to FHIR server\n"


def _call(app, method, path, body=b""):
    environ = {}
    setup_testing_defaults(environ)
    environ.update(
        {
            "REQUEST_METHOD": method,
            "PATH_INFO": path,
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
    )
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    payload = b"".join(app(environ, start_response))
    return captured["status"], captured["headers"], payload


def test_app_serves_validate(validator):
    app = make_app(validator, "")
    body = json.dumps(PATIENT).encode()
    status, headers, payload = _call(app, "POST", "/validate", body)
    assert status.startswith(str(int(HTTPStatus.OK)))
    assert json.loads(payload) == PATIENT
    assert headers["Content-Length"] == str(len(payload))


def test_app_unknown_path(validator):
    status, _, _ = _call(make_app(validator, ""), "POST", "/other", b"{}")
    assert status.startswith(str(int(HTTPStatus.NOT_FOUND)))


def test_app_missing_resource_type_is_server_error(validator):
    status, _, _ = _call(make_app(validator, ""), "POST", "/validate", b'{"id": "a"}')
    assert status.startswith(str(int(HTTPStatus.INTERNAL_SERVER_ERROR)))


def test_main_fails_without_configuration(tmp_path):
    assert main(["--config-dir", str(tmp_path)]) == 1