# fhirgate

A small HTTP service that checks FHIR resources before they reach a FHIR
server. It accepts `POST /validate` with a JSON body and applies field rules
and transaction-bundle recipes to it:

- an invalid resource gets status 400 and an `OperationOutcome` that lists
  every problem;
- a valid resource is forwarded to the server named by `FHIR_SERVER_URL`,
  and that server's status, `Content-Type` and body are passed back;
- when `FHIR_SERVER_URL` is unset or empty, a valid resource is echoed back
  with status 200.

## Installation

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Configuration

The configuration directory (`configs` by default) holds three things, all
read at start-up:

- `profiles/` holds FHIR `StructureDefinition` JSON files. Every `*.json`
  file below it is read and kept by its `url` in `Validator.profiles`.
  Profiles are loaded only: no check is made against them.
- `rules.yaml` holds extra field rules, keyed by resource type and then by
  field path (without the resource type):

  ```yaml
  Patient:
    name.family:
      min: 1
    address:
      max: 2
    active:
      fixedValue: true
    gender:
      allowedValues: [male, female, other, unknown]
    address.postalCode:
      pattern: "^[A-Z]{1,2}[0-9R][0-9A-Z]? ?[0-9][A-Z]{2}$"
  ```

  - `min` greater than 0: the field must be present (an empty list does not
    count). A list along the path matches if any of its items holds the
    rest of the path.
  - `max` greater than 0: the field may occur at most that many times (a
    list counts its items, a single value counts once).
  - `fixedValue`: the field must equal this value.
  - `allowedValues`: the field must equal one of these values.
  - `pattern`: the field must be a string containing a match for this
    regular expression. An invalid expression never matches.
  - `mustSupport` is read but not checked.
- `recipes.yaml` holds recipes for transaction bundles under a
  `transaction` key. The `default` recipe is applied to every bundle with
  `"type": "transaction"`:

  ```yaml
  transaction:
    default:
      requiredResources:
        - resourceType: Patient
      mustReference:
        - source: Encounter
          target: Patient
  ```

Every transaction bundle, recipe or not, must also contain a `Provenance`
resource, and every `reference` string inside its entries must name a
`Type/id` of a resource in the same bundle.

## Running

```
fhirgate
```

Options:

- `--config-dir DIR` — configuration directory (default `configs`)
- `--host HOST` — address to listen on (default: all addresses)
- `--port PORT` — port to listen on (default 8080)

If the configuration cannot be loaded, the command logs the error and exits
with status 1. To forward valid resources to a FHIR server, set the
variable first:

```
FHIR_SERVER_URL=http://localhost:9090/fhir fhirgate
```

Only `http` and `https` URLs are forwarded to; a failed forward answers 502,
and a value that is neither an absolute URI nor an absolute path answers 500.
Requests other than `POST` answer 405, a body that is not a JSON object
answers 400, and any path other than `/validate` answers 404.

## Library use

```python
from fhirgate.validator import Validator

validator = Validator.from_config(
    "configs/profiles", "configs/rules.yaml", "configs/recipes.yaml"
)
result = validator.validate({"resourceType": "Patient", "active": True})
print(result.valid, result.errors, result.outcome)
```

`Validator.validate` raises `ValueError` when the resource has no string
`resourceType`. A `Validator` can also be built directly from
`profiles`, `rules` and `recipes` mappings, as returned by
`fhirgate.profiles.load_profiles`, `fhirgate.rules.load_rules` and
`fhirgate.recipes.load_recipes`.

- `fhirgate.api.handle_validate(validator, method, body)` returns a
  `Response` (status, headers, body bytes) whose body is always an
  `OperationOutcome`: status 200 for a valid resource, 400 otherwise. It
  does not forward anything.
- `fhirgate.server.handle_proxy(validator, method, body, fhir_url)` does
  what the server does for one request and returns a `Response`.
- `fhirgate.server.make_app(validator, fhir_url)` builds the WSGI
  application that the `fhirgate` command serves.
- `fhirgate.rules` also offers the path checks `field_exists`,
  `count_field`, `field_has_fixed_value`, `field_has_allowed_value` and
  `field_matches_pattern`, and `apply_extra_rules`.
- `fhirgate.validator` offers `collect_references` and
  `unresolved_references`.

## What it does not do

The validator does not check resources against the loaded
`StructureDefinition` profiles, does not check data types or cardinality
beyond the rules listed above, and applies only the `default` bundle
recipe. The built-in server is a plain single-threaded WSGI server with no
TLS or authentication.