"""Core data models for identifier preservation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Iterator

from driftguard.errors import ValidationError

CURRENT_MAP_VERSION = "1.0.0"


class PreservationStrategy(StrEnum):
    """How a synthesized resource is matched to its original identifier."""

    EXACT_MATCH = "exact-match"
    PATTERN_BASED = "pattern-based"
    HASH_BASED = "hash-based"


@dataclass(frozen=True)
class MappingMetadata:
    """Bookkeeping timestamps for a single mapping."""

    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class IdentifierMapping:
    """One renaming rule: restore ``original_id`` where ``new_id`` was synthesized."""

    original_id: str
    new_id: str
    resource_type: str
    component_name: str = ""
    component_type: str = ""
    preservation_strategy: PreservationStrategy = PreservationStrategy.EXACT_MATCH
    metadata: MappingMetadata | None = None

    def describe(self) -> str:
        return f"{self.new_id} -> {self.original_id}"


@dataclass(frozen=True)
class DriftAvoidanceConfig:
    """Per-map switches persisted alongside the mappings."""

    enable_deterministic_naming: bool = True
    preserve_resource_order: bool = True
    validate_before_apply: bool = True


@dataclass(frozen=True)
class IdentifierMap:
    """The persisted mapping document for one stack.

    ``mappings`` is keyed by ``new_id``.
    """

    stack_name: str
    created_at: datetime
    updated_at: datetime
    mappings: dict[str, IdentifierMapping] = field(default_factory=dict)
    environment: str | None = None
    version: str = CURRENT_MAP_VERSION
    drift_avoidance_config: DriftAvoidanceConfig = field(default_factory=DriftAvoidanceConfig)


@dataclass(frozen=True)
class Resource:
    """A single synthesized resource.

    ``attributes`` holds resource-level template keys other than the type,
    properties and dependencies (``DeletionPolicy``, ``Metadata``, ...). They
    are carried through unchanged.
    """

    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceTree:
    """Ordered mapping of identifier to resource, as produced by synthesis.

    ``sections`` keeps the non-resource parts of a template document
    (``Outputs``, ``Conditions``, ...) so references in them can be repaired.
    """

    resources: dict[str, Resource]
    sections: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.resources)

    def __iter__(self) -> Iterator[str]:
        return iter(self.resources)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.resources

    def __getitem__(self, resource_id: str) -> Resource:
        return self.resources[resource_id]

    def ids(self) -> list[str]:
        return list(self.resources)

    def items(self):
        return self.resources.items()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceTree":
        """Build a tree from a template document or a plain ``{id: record}`` mapping.

        Template documents carry a ``Resources`` section with ``Type`` /
        ``Properties`` / ``DependsOn`` records; plain mappings may use
        lowercase ``type`` / ``properties`` / ``depends_on`` keys.
        """
        if not isinstance(data, dict):
            raise ValidationError("Resource tree must be a JSON object")

        sections: dict[str, Any] = {}
        if isinstance(data.get("Resources"), dict):
            records = data["Resources"]
            sections = {k: v for k, v in data.items() if k != "Resources"}
        else:
            records = data

        resources: dict[str, Resource] = {}
        for resource_id, record in records.items():
            resources[resource_id] = _parse_resource(resource_id, record)
        return cls(resources=resources, sections=sections)

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to a template document."""
        records: dict[str, Any] = {}
        for resource_id, resource in self.resources.items():
            record: dict[str, Any] = {"Type": resource.type}
            if resource.properties:
                record["Properties"] = resource.properties
            if resource.depends_on:
                record["DependsOn"] = list(resource.depends_on)
            record.update(resource.attributes)
            records[resource_id] = record
        return {**self.sections, "Resources": records}


_TYPE_KEYS = ("Type", "type")
_PROPERTY_KEYS = ("Properties", "properties")
_DEPENDS_KEYS = ("DependsOn", "depends_on", "dependsOn")


def _parse_resource(resource_id: str, record: Any) -> Resource:
    if not isinstance(record, dict):
        raise ValidationError(f"Resource {resource_id!r} must be an object")

    resource_type = next((record[k] for k in _TYPE_KEYS if k in record), None)
    if not isinstance(resource_type, str) or not resource_type:
        raise ValidationError(f"Resource {resource_id!r} is missing a type")

    properties = next((record[k] for k in _PROPERTY_KEYS if k in record), None) or {}
    if not isinstance(properties, dict):
        raise ValidationError(f"Resource {resource_id!r} properties must be an object")

    depends_on = next((record[k] for k in _DEPENDS_KEYS if k in record), None) or ()
    if isinstance(depends_on, str):
        depends_on = (depends_on,)

    known = set(_TYPE_KEYS) | set(_PROPERTY_KEYS) | set(_DEPENDS_KEYS)
    attributes = {k: v for k, v in record.items() if k not in known}

    return Resource(
        type=resource_type,
        properties=properties,
        depends_on=tuple(depends_on),
        attributes=attributes,
    )
