"""HTTP handling of validation requests that answers with an OperationOutcome."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

from .validator import Validator

FHIR_JSON = "application/fhir+json"

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class Response:
    """A complete HTTP response: status code, headers and body bytes."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal {name}")


def _decode_resource(body: bytes) -> dict[str, Any]:
    """Parse a request body into a JSON object; raise ValueError otherwise."""
    text = body.decode("utf-8", errors="replace")
    data = json.loads(text, parse_constant=_reject_constant)
    if not isinstance(data, dict):
        raise ValueError("request body is not a JSON object")
    return data


def _encode_json(value: Any) -> bytes:
    """Serialise *value* compactly, keys sorted, HTML-sensitive characters escaped."""
    text = json.dumps(
        value, ensure_ascii=False, sort_keys=True, separators=(",", ":"), allow_nan=False
    )
    for char, escaped in _ESCAPES.items():
        text = text.replace(char, escaped)
    return (text + "\n").encode("utf-8", errors="replace")


def operation_outcome(severity: str, code: str, diagnostics: str) -> dict[str, Any]:
    """Build an OperationOutcome holding a single issue."""
    return {
        "resourceType": "OperationOutcome",
        "issue": [{"severity": severity, "code": code, "diagnostics": diagnostics}],
    }


def _error_outcome(status: int, message: str) -> Response:
    return Response(
        status=status,
        headers={"Content-Type": FHIR_JSON},
        body=_encode_json(operation_outcome("error", "invalid", message)),
    )


def handle_validate(validator: Validator, method: str, body: bytes) -> Response:
    """Validate the JSON resource in *body* and answer with an OperationOutcome.

    Raises ValueError when the resource has no string ``resourceType``.
    """
    if method != "POST":
        return _error_outcome(HTTPStatus.METHOD_NOT_ALLOWED, "Only POST allowed")
    try:
        resource = _decode_resource(body)
    except ValueError:
        return _error_outcome(HTTPStatus.BAD_REQUEST, "Invalid JSON")

    result = validator.validate(resource)
    status = HTTPStatus.OK if result.valid else HTTPStatus.BAD_REQUEST
    return Response(
        status=status,
        headers={"Content-Type": FHIR_JSON},
        body=_encode_json(result.outcome),
    )