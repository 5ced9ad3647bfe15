"""Loading of FHIR StructureDefinition profiles from a directory tree."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union


def _of(value: Any, kind: type, what: str) -> Any:
    """Return *value* checked against *kind*; None becomes an empty *kind*."""
    if value is None:
        return kind()
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"{what} must be {kind.__name__}, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class ElementDefinition:
    """One element of a StructureDefinition snapshot."""

    path: str = ""
    min: int = 0


@dataclass
class StructureDefinition:
    """A FHIR StructureDefinition reduced to its URL and snapshot elements."""

    url: str = ""
    elements: list[ElementDefinition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "StructureDefinition":
        """Build a definition from decoded JSON; raise ValueError on bad shapes."""
        obj = _of(data, dict, "StructureDefinition")
        snapshot = _of(obj.get("snapshot"), dict, "snapshot")
        elements = [
            ElementDefinition(
                path=_of(item.get("path"), str, "element.path"),
                min=_of(item.get("min"), int, "element.min"),
            )
            for item in (
                _of(raw, dict, "element")
                for raw in _of(snapshot.get("element"), list, "snapshot.element")
            )
        ]
        return cls(url=_of(obj.get("url"), str, "url"), elements=elements)


def load_profiles(directory: Union[str, Path]) -> dict[str, StructureDefinition]:
    """Load every StructureDefinition below *directory*, keyed by URL.

    Definitions without a URL are ignored; later files override earlier ones
    with the same URL. A missing directory yields an empty mapping.
    """
    profiles: dict[str, StructureDefinition] = {}
    paths = sorted(Path(directory).rglob("*.json"), key=lambda p: p.parts)
    for path in paths:
        if path.is_dir():
            continue
        try:
            definition = StructureDefinition.from_dict(json.loads(path.read_bytes()))
        except ValueError as exc:
            raise ValueError(f"error parsing profile {path}: {exc}") from exc
        if definition.url:
            profiles[definition.url] = definition
    return profiles