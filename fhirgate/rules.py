"""Extra per-field validation rules and the path lookups they rely on."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

PathLike = Union[str, Path]
Resource = Mapping[str, Any]

log = logging.getLogger(__name__)

_MISSING = object()


def _of(value: Any, kind: type, what: str) -> Any:
    """Return *value* checked against *kind*, or an empty *kind* when it is None."""
    if value is None:
        return kind()
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"{what} must be {kind.__name__}, got {type(value).__name__}")
    return value


@dataclass
class FieldRule:
    """Constraints that apply to one field path of a resource type."""

    min: int = 0
    max: int = 0
    fixed_value: Any = None
    allowed_values: list[Any] = field(default_factory=list)
    pattern: str = ""
    must_support: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "FieldRule":
        """Build a rule from its YAML mapping; raise ValueError on bad shapes."""
        obj = _of(data, dict, "rule")
        return cls(
            min=_of(obj.get("min"), int, "min"),
            max=_of(obj.get("max"), int, "max"),
            fixed_value=obj.get("fixedValue"),
            allowed_values=list(_of(obj.get("allowedValues"), list, "allowedValues")),
            pattern=_of(obj.get("pattern"), str, "pattern"),
            must_support=_of(obj.get("mustSupport"), bool, "mustSupport"),
        )


RuleSet = Mapping[str, Mapping[str, FieldRule]]


def load_rules(path: PathLike) -> dict[str, dict[str, FieldRule]]:
    """Read rules from YAML: resource type -> field path -> rule."""
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    return {
        str(resource_type): {
            str(field_path): FieldRule.from_dict(rule)
            for field_path, rule in _of(fields, dict, str(resource_type)).items()
        }
        for resource_type, fields in _of(data, dict, "rules file").items()
    }


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        inner = " ".join(
            f"{key}:{_format_value(val)}" for key, val in sorted(value.items(), key=str)
        )
        return f"map[{inner}]"
    return str(value)


def _same_value(actual: Any, expected: Any) -> bool:
    """Equality that, unlike ``==``, keeps booleans apart from numbers."""
    return isinstance(actual, bool) == isinstance(expected, bool) and actual == expected


def apply_extra_rules(rules: RuleSet, resource_type: str, resource: Resource) -> list[str]:
    """Check *resource* against the rules for its type and list the violations."""
    errors: list[str] = []
    for path, rule in rules.get(resource_type, {}).items():
        full_path = f"{resource_type}.{path}"
        if rule.min > 0 and not field_exists(resource, full_path):
            errors.append(f"Missing required field (min): {path}")
        if rule.max > 0 and count_field(resource, full_path) > rule.max:
            errors.append(f"Too many instances of field (max {rule.max}): {path}")
        if rule.fixed_value is not None and not field_has_fixed_value(
            resource, full_path, rule.fixed_value
        ):
            errors.append(
                f"Field {path} does not have fixed value {_format_value(rule.fixed_value)}"
            )
        if rule.allowed_values and not field_has_allowed_value(
            resource, full_path, rule.allowed_values
        ):
            errors.append(f"Field {path} has disallowed value")
        if rule.pattern and not field_matches_pattern(resource, full_path, rule.pattern):
            errors.append(f"Field {path} does not match pattern {rule.pattern}")
    return errors


def _rest_path(parts: list[str], index: int) -> str:
    return parts[0] + "." + ".".join(parts[index + 1 :])


def _plain_value(resource: Resource, parts: list[str]) -> Any:
    """Follow nested objects along parts[1:]; _MISSING when the path breaks."""
    if len(parts) < 2:
        return _MISSING
    current = resource
    for part in parts[1:-1]:
        value = current.get(part, _MISSING)
        if not isinstance(value, dict):
            return _MISSING
        current = value
    return current.get(parts[-1], _MISSING)


def field_exists(resource: Resource, full_path: str) -> bool:
    """Whether the dotted path (first segment is the resource type) is present.

    Lists in the middle of a path match if any element holds the rest of it;
    a list at the end counts only when non-empty.
    """
    parts = full_path.split(".")
    last = len(parts) - 1
    current = resource
    for index, part in enumerate(parts[1:], start=1):
        if part not in current:
            return False
        value = current[part]
        if index == last:
            return len(value) > 0 if isinstance(value, list) else True
        if isinstance(value, dict):
            current = value
        elif isinstance(value, list):
            rest = _rest_path(parts, index)
            return any(isinstance(item, dict) and field_exists(item, rest) for item in value)
        else:
            return False
    return True


def count_field(resource: Resource, full_path: str) -> int:
    """Count instances at the path: a list's length, 1 for a scalar, else 0."""
    parts = full_path.split(".")
    last = len(parts) - 1
    current = resource
    for index, part in enumerate(parts[1:], start=1):
        if part not in current:
            return 0
        value = current[part]
        if isinstance(value, list):
            return len(value)
        if isinstance(value, dict):
            current = value
            continue
        return int(index == last and value is not None)
    return 0


def field_has_fixed_value(resource: Resource, full_path: str, expected: Any) -> bool:
    """Whether the value at the path equals *expected*."""
    parts = full_path.split(".")
    if len(parts) == 1:
        value = resource.get(parts[0], _MISSING)
    else:
        value = _plain_value(resource, parts)
    return value is not _MISSING and _same_value(value, expected)


def field_has_allowed_value(resource: Resource, full_path: str, allowed: list[Any]) -> bool:
    """Whether the value at the path is one of *allowed*."""
    value = _plain_value(resource, full_path.split("."))
    return value is not _MISSING and any(_same_value(value, item) for item in allowed)


def field_matches_pattern(resource: Resource, full_path: str, pattern: str) -> bool:
    """Whether the string at the path contains a match for *pattern*.

    Lists in the middle of a path match if any element matches; an invalid
    pattern or a non-string value never matches.
    """
    parts = full_path.split(".")
    last = len(parts) - 1
    current = resource
    for index, part in enumerate(parts[1:], start=1):
        if part not in current:
            log.debug("Field %s not found at path %s", part, ".".join(parts[: index + 1]))
            return False
        value = current[part]
        if index == last:
            if not isinstance(value, str):
                log.debug("Field %s is not a string", part)
                return False
            try:
                matches = re.search(pattern, value) is not None
            except re.error as exc:
                log.debug("Invalid pattern %s: %s", pattern, exc)
                return False
            log.debug("Testing pattern %s against value %r: %s", pattern, value, matches)
            return matches
        if isinstance(value, dict):
            current = value
        elif isinstance(value, list):
            rest = _rest_path(parts, index)
            return any(
                isinstance(item, dict) and field_matches_pattern(item, rest, pattern)
                for item in value
            )
        else:
            return False
    return False