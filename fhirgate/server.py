"""The validating proxy: checks resources and forwards valid ones upstream."""

from __future__ import annotations

import argparse
import http.client
import logging
import os
import urllib.error
import urllib.request
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence
from urllib.parse import urlsplit
from wsgiref.simple_server import make_server

import yaml

from .api import FHIR_JSON, Response, _decode_resource, _encode_json
from .validator import Validator

log = logging.getLogger(__name__)

_PLAIN = "text/plain; charset=utf-8"


def _text_error(status: int, message: str) -> Response:
    headers = {"Content-Type": _PLAIN, "X-Content-Type-Options": "nosniff"}
    return Response(status=status, headers=headers, body=(message + "\n").encode())


def _is_request_uri(url: str) -> bool:
    """Whether *url* is an absolute URI or an absolute path."""
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in url):
        return False
    try:
        return url.startswith("/") or bool(urlsplit(url).scheme)
    except ValueError:
        return False


def _forward(url: str, body: bytes) -> Response:
    """POST *body* to *url* and hand back whatever the server answered."""
    if urlsplit(url).scheme.lower() not in ("http", "https"):
        return _text_error(HTTPStatus.BAD_GATEWAY, "Failed to forward to FHIR server")
    request = urllib.request.Request(
        url, data=body, headers={"Content-Type": FHIR_JSON}, method="POST"
    )
    try:
        with urllib.request.urlopen(request) as upstream:
            status, headers, content = upstream.status, upstream.headers, upstream.read()
    except urllib.error.HTTPError as exc:
        with exc:
            status, headers, content = exc.code, exc.headers, exc.read()
    except (OSError, ValueError, http.client.HTTPException) as exc:
        log.warning("Forwarding to %s failed: %s", url, exc)
        return _text_error(HTTPStatus.BAD_GATEWAY, "Failed to forward to FHIR server")
    return Response(
        status=status, headers={"Content-Type": headers.get("Content-Type", "")}, body=content
    )


def handle_proxy(
    validator: Validator, method: str, body: bytes, fhir_url: Optional[str]
) -> Response:
    """Validate *body*; forward it to *fhir_url* when valid, or echo it back.

    Invalid resources get an OperationOutcome listing the errors. Raises
    ValueError when the resource has no string ``resourceType``.
    """
    if method != "POST":
        return _text_error(HTTPStatus.METHOD_NOT_ALLOWED, "Only POST allowed")
    try:
        resource = _decode_resource(body)
    except ValueError:
        return _text_error(HTTPStatus.BAD_REQUEST, "Invalid JSON")

    result = validator.validate(resource)
    if not result.valid:
        # The status goes out before a content type is set, so the outcome
        # is served as plain text.
        return Response(
            status=HTTPStatus.BAD_REQUEST,
            headers={"Content-Type": _PLAIN},
            body=_encode_json(result.outcome),
        )
    if fhir_url:
        if not _is_request_uri(fhir_url):
            return _text_error(HTTPStatus.INTERNAL_SERVER_ERROR, "Invalid FHIR_SERVER_URL")
        return _forward(fhir_url, body)
    return Response(
        status=HTTPStatus.OK, headers={"Content-Type": FHIR_JSON}, body=_encode_json(resource)
    )


def _read_body(environ: dict) -> bytes:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    stream = environ.get("wsgi.input")
    return stream.read(length) if stream is not None and length > 0 else b""


def make_app(
    validator: Validator, fhir_url: Optional[str] = None
) -> Callable[[dict, Callable[..., Any]], Iterable[bytes]]:
    """Build a WSGI application serving ``/validate``."""

    def app(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        if environ.get("PATH_INFO") != "/validate":
            response = _text_error(HTTPStatus.NOT_FOUND, "404 page not found")
        else:
            method = environ.get("REQUEST_METHOD", "GET")
            try:
                response = handle_proxy(validator, method, _read_body(environ), fhir_url)
            except ValueError:
                log.exception("Validation failed")
                response = _text_error(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
        try:
            phrase = HTTPStatus(response.status).phrase
        except ValueError:
            phrase = "Unknown"
        headers = [*response.headers.items(), ("Content-Length", str(len(response.body)))]
        start_response(f"{int(response.status)} {phrase}", headers)
        return [response.body]

    return app


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Load the configuration and serve the validating proxy."""
    parser = argparse.ArgumentParser(description="Validate FHIR resources before forwarding.")
    parser.add_argument("--config-dir", default="configs", help="configuration directory")
    parser.add_argument("--host", default="", help="address to listen on")
    parser.add_argument("--port", type=int, default=8080, help="port to listen on")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    config = Path(args.config_dir)
    try:
        validator = Validator.from_config(
            config / "profiles", config / "rules.yaml", config / "recipes.yaml"
        )
    except (OSError, ValueError, yaml.YAMLError) as exc:
        log.error("Failed to load configuration: %s", exc)
        return 1

    app = make_app(validator, os.environ.get("FHIR_SERVER_URL", ""))
    with make_server(args.host, args.port, app) as server:
        log.info("Validator running at http://localhost:%d", args.port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0