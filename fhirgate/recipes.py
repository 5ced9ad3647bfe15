"""Bundle recipes: resources a transaction must contain and links it must carry."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import yaml


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"expected a scalar, got {type(value).__name__}")


def _of(value: Any, kind: type, what: str) -> Any:
    if value is None:
        return kind()
    if not isinstance(value, kind):
        raise ValueError(f"{what} must be {kind.__name__}, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class MustReference:
    """A requirement that some *source* resource references a *target* type."""

    source: str = ""
    target: str = ""


@dataclass
class Recipe:
    """Resource types a bundle must hold and references it must contain."""

    required_resources: list[str] = field(default_factory=list)
    must_reference: list[MustReference] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Recipe":
        """Build a recipe from decoded YAML; raise ValueError on bad shapes."""
        obj = _of(data, dict, "recipe")
        required = [
            _text(_of(item, dict, "requiredResources item").get("resourceType"))
            for item in _of(obj.get("requiredResources"), list, "requiredResources")
        ]
        references = [
            MustReference(source=_text(entry.get("source")), target=_text(entry.get("target")))
            for entry in (
                _of(item, dict, "mustReference item")
                for item in _of(obj.get("mustReference"), list, "mustReference")
            )
        ]
        return cls(required_resources=required, must_reference=references)


def load_recipes(path: Union[str, Path]) -> dict[str, Recipe]:
    """Read the recipes under the ``transaction`` key of a YAML file, keyed by name."""
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    transaction = _of(_of(data, dict, "recipes file").get("transaction"), dict, "transaction")
    return {_text(name): Recipe.from_dict(body) for name, body in transaction.items()}