import json
from http import HTTPStatus

import pytest

from fhirgate.api import Response, handle_validate, operation_outcome
from fhirgate.rules import FieldRule
from fhirgate.validator import Validator

POSTCODE = "^[A-Z]{1,2}[0-9R][0-9A-Z]? ?[0-9][A-Z]{2}$"


@pytest.fixture
def validator():
    return Validator(
        rules={
            "Patient": {
                "gender": FieldRule(allowed_values=["male", "female", "other", "unknown"]),
                "name.family": FieldRule(min=1),
                "address.postalCode": FieldRule(pattern=POSTCODE),
            }
        }
    )


VALID_PATIENT = b"""{
"resourceType": "Patient",
"meta": {
    "profile": ["https://fhir.nhs.wales/StructureDefinition/DataStandardsWales-Patient"]
},
"active": true,
"gender": "female",
"birthDate": "[date-of-birth]",
"name": [{"family": "Smith"}],
"address": [{"postalCode": "CF10 1EP"}]
}"""


def test_valid_resource(validator):
    response = handle_validate(validator, "POST", VALID_PATIENT)
    assert isinstance(response, Response)
    assert response.status == HTTPStatus.OK
    assert response.headers["Content-Type"] == "application/fhir+json"
    outcome = json.loads(response.body)
    assert outcome["resourceType"] == "OperationOutcome"
    assert len(outcome["issue"]) > 0
    assert outcome["issue"][0]["severity"] == "information"
    assert outcome["issue"][0]["diagnostics"] == "Validation successful"


def test_invalid_json(validator):
    response = handle_validate(validator, "POST", b"{invalid json")
    assert response.status == HTTPStatus.BAD_REQUEST
    outcome = json.loads(response.body)
    assert outcome["resourceType"] == "OperationOutcome"
    assert outcome["issue"][0]["diagnostics"] == "Invalid JSON"


def test_non_object_json_is_invalid(validator):
    response = handle_validate(validator, "POST", b"[1, 2]")
    assert response.status == HTTPStatus.BAD_REQUEST
    assert json.loads(response.body)["issue"][0]["diagnostics"] == "Invalid JSON"


def test_only_post_allowed(validator):
    response = handle_validate(validator, "GET", VALID_PATIENT)
    assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
    issue = json.loads(response.body)["issue"][0]
    assert issue == {"severity": "error", "code": "invalid", "diagnostics": "Only POST allowed"}


def test_rule_violation_lists_errors(validator):
    body = json.dumps(
        {"resourceType": "Patient", "gender": "robot", "name": [{"family": "Smith"}]}
    ).encode()
    response = handle_validate(validator, "POST", body)
    assert response.status == HTTPStatus.BAD_REQUEST
    issues = json.loads(response.body)["issue"]
    assert {"severity": "error", "code": "invalid", "diagnostics": "Field gender has disallowed value"} in issues
    assert all(issue["severity"] == "error" for issue in issues)


def test_missing_resource_type_raises(validator):
    with pytest.raises(ValueError):
        handle_validate(validator, "POST", b'{"id": "pat1"}')


def test_output_escapes_html_and_ends_with_newline():
    checker = Validator(rules={"Patient": {"id": FieldRule(pattern="^<a>$")}})
    response = handle_validate(checker, "POST", b'{"resourceType": "Patient", "id": "b"}')
    assert response.status == HTTPStatus.BAD_REQUEST
    assert response.body.endswith(b"\n")
    assert b"<" not in response.body
    assert b"\\u003c" in response.body
    assert json.loads(response.body)["issue"][0]["diagnostics"] == (
        "Field id does not match pattern ^<a>$"
    )


def test_operation_outcome_shape():
    outcome = operation_outcome("information", "informational", "Validation successful")
    assert outcome == {
        "resourceType": "OperationOutcome",
        "issue": [
            {
                "severity": "information",
                "code": "informational",
                "diagnostics": "Validation successful",
            }
        ],
    }