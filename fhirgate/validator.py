"""Validation of FHIR resources against extra rules and bundle recipes."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Union

from .profiles import StructureDefinition, load_profiles
from .recipes import Recipe, load_recipes
from .rules import FieldRule, apply_extra_rules, load_rules

PathLike = Union[str, Path]


def _issue(severity: str, code: str, diagnostics: str) -> dict[str, Any]:
    return {"severity": severity, "code": code, "diagnostics": diagnostics}


def _entry_resources(entries: Iterable[Any]) -> Iterator[dict[str, Any]]:
    """Yield the ``resource`` objects of well-formed bundle entries."""
    for entry in entries:
        if isinstance(entry, dict):
            resource = entry.get("resource")
            if isinstance(resource, dict):
                yield resource


@dataclass
class ValidationResult:
    """Outcome of validating one resource."""

    valid: bool
    errors: list[str]
    outcome: dict[str, Any]


def collect_references(resource: Any) -> list[str]:
    """Return every string found under a ``reference`` key, at any depth."""
    refs: list[str] = []

    def walk(data: Any) -> None:
        if isinstance(data, dict):
            for key, value in data.items():
                if key == "reference":
                    if isinstance(value, str):
                        refs.append(value)
                else:
                    walk(value)
        elif isinstance(data, list):
            for item in data:
                walk(item)

    walk(resource)
    return refs


def unresolved_references(refs: Iterable[str], bundle: Mapping[str, Any]) -> list[str]:
    """Return the references that name no ``Type/id`` resource in the bundle.

    Raises ValueError when the bundle has no entry list or an entry's
    resource lacks a string ``resourceType`` or ``id``.
    """
    entries = bundle.get("entry")
    if not isinstance(entries, list):
        raise ValueError("bundle entry must be an array")
    seen: set[str] = set()
    for resource in _entry_resources(entries):
        resource_type = resource.get("resourceType")
        resource_id = resource.get("id")
        if not isinstance(resource_type, str):
            raise ValueError("bundle entry resource has no string resourceType")
        if not isinstance(resource_id, str):
            raise ValueError("bundle entry resource has no string id")
        seen.add(f"{resource_type}/{resource_id}")
    return [ref for ref in refs if ref not in seen]


@dataclass
class Validator:
    """Validates resources with loaded profiles, field rules and recipes."""

    profiles: dict[str, StructureDefinition] = field(default_factory=dict)
    rules: dict[str, dict[str, FieldRule]] = field(default_factory=dict)
    recipes: dict[str, Recipe] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls, profiles_dir: PathLike, rules_path: PathLike, recipes_path: PathLike
    ) -> "Validator":
        """Load profiles, rules and recipes from their configuration files."""
        return cls(
            profiles=load_profiles(profiles_dir),
            rules=load_rules(rules_path),
            recipes=load_recipes(recipes_path),
        )

    def validate(self, resource: Mapping[str, Any]) -> ValidationResult:
        """Validate *resource*; raise ValueError if it has no string resourceType."""
        resource_type = resource.get("resourceType")
        if not isinstance(resource_type, str):
            raise ValueError("resourceType must be a string")

        errors = apply_extra_rules(self.rules, resource_type, resource)
        if resource_type == "Bundle" and resource.get("type") == "transaction":
            errors.extend(self.validate_transaction_bundle(resource))

        valid = not errors
        if valid:
            issues = [_issue("information", "informational", "Validation successful")]
        else:
            issues = [_issue("error", "invalid", message) for message in errors]
        outcome = {"resourceType": "OperationOutcome", "issue": issues}
        return ValidationResult(valid=valid, errors=errors, outcome=outcome)

    def validate_transaction_bundle(self, bundle: Mapping[str, Any]) -> list[str]:
        """List the problems of a transaction bundle."""
        entries = bundle.get("entry")
        if not isinstance(entries, list):
            return ["Invalid or missing bundle entries"]

        errors: list[str] = []
        resources = list(_entry_resources(entries))

        if not any(res.get("resourceType") == "Provenance" for res in resources):
            errors.append("Missing required Provenance resource in transaction")

        recipe = self.recipes.get("default")
        if recipe is not None:
            by_type: dict[str, list[dict[str, Any]]] = {}
            for res in resources:
                resource_type = res.get("resourceType")
                if isinstance(resource_type, str):
                    by_type.setdefault(resource_type, []).append(res)

            errors.extend(
                f"Missing required resource in bundle: {required}"
                for required in recipe.required_resources
                if required not in by_type
            )

            for rule in recipe.must_reference:
                prefix = rule.target + "/"
                found = any(
                    ref.startswith(prefix)
                    for source in by_type.get(rule.source, [])
                    for ref in collect_references(source)
                )
                if not found:
                    errors.append(f"No {rule.source} -> {rule.target} reference found")

        all_refs = [ref for res in resources for ref in collect_references(res)]
        errors.extend(
            f"Unresolved reference: {ref}" for ref in unresolved_references(all_refs, bundle)
        )
        return errors