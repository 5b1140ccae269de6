"""Load, save, validate and edit identifier map documents."""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from driftguard.adoption import (
    AdoptionResult,
    ComponentAssignment,
    NamingMatch,
    classify_naming,
    expected_new_id,
)
from driftguard.errors import ConflictError, IdentifierMapIOError, ValidationError
from driftguard.models import (
    CURRENT_MAP_VERSION,
    DriftAvoidanceConfig,
    IdentifierMap,
    IdentifierMapping,
    MappingMetadata,
    PreservationStrategy,
    ResourceTree,
)

SUPPORTED_MAJOR_VERSIONS = {"1"}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating an identifier map."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def identifier_map_to_dict(identifier_map: IdentifierMap) -> dict[str, Any]:
    """Convert a map to its camelCase JSON document."""
    cfg = identifier_map.drift_avoidance_config
    document: dict[str, Any] = {
        "version": identifier_map.version,
        "stackName": identifier_map.stack_name,
        "createdAt": identifier_map.created_at.isoformat(),
        "updatedAt": identifier_map.updated_at.isoformat(),
        "mappings": {
            new_id: _mapping_to_dict(mapping)
            for new_id, mapping in identifier_map.mappings.items()
        },
        "driftAvoidanceConfig": {
            "enableDeterministicNaming": cfg.enable_deterministic_naming,
            "preserveResourceOrder": cfg.preserve_resource_order,
            "validateBeforeApply": cfg.validate_before_apply,
        },
    }
    if identifier_map.environment is not None:
        document["environment"] = identifier_map.environment
    return document


def _mapping_to_dict(mapping: IdentifierMapping) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "originalId": mapping.original_id,
        "newId": mapping.new_id,
        "resourceType": mapping.resource_type,
        "componentName": mapping.component_name,
        "componentType": mapping.component_type,
        "preservationStrategy": mapping.preservation_strategy.value,
    }
    if mapping.metadata is not None:
        entry["metadata"] = {
            "createdAt": mapping.metadata.created_at.isoformat(),
            "updatedAt": mapping.metadata.updated_at.isoformat(),
        }
    return entry


def identifier_map_from_dict(data: Any) -> IdentifierMap:
    """Parse a JSON document into an IdentifierMap.

    Raises ValidationError when the document does not match the schema or
    declares a version this release cannot read. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        raise ValidationError("Identifier map must be a JSON object")

    version = data.get("version")
    if not isinstance(version, str) or not version:
        raise ValidationError("Missing version field")
    if version.split(".")[0] not in SUPPORTED_MAJOR_VERSIONS:
        raise ValidationError(f"Unsupported identifier map version: {version}")

    stack_name = data.get("stackName")
    if not isinstance(stack_name, str) or not stack_name:
        raise ValidationError("Missing stackName field")

    environment = data.get("environment")
    if environment is not None and not isinstance(environment, str):
        raise ValidationError("environment must be a string")

    raw_mappings = data.get("mappings")
    if not isinstance(raw_mappings, dict):
        raise ValidationError("Missing or invalid mappings field")

    mappings = {
        new_id: _mapping_from_dict(new_id, entry) for new_id, entry in raw_mappings.items()
    }

    return IdentifierMap(
        version=version,
        stack_name=stack_name,
        environment=environment,
        created_at=_parse_timestamp(data.get("createdAt"), "createdAt"),
        updated_at=_parse_timestamp(data.get("updatedAt"), "updatedAt"),
        mappings=mappings,
        drift_avoidance_config=_config_from_dict(data.get("driftAvoidanceConfig", {})),
    )


def _mapping_from_dict(new_id: str, entry: Any) -> IdentifierMapping:
    if not isinstance(entry, dict):
        raise ValidationError(f"Invalid mapping entry for {new_id}")

    for key in ("originalId", "newId", "resourceType"):
        if not isinstance(entry.get(key), str):
            raise ValidationError(f"Invalid mapping entry for {new_id}: {key} must be a string")
    for key in ("componentName", "componentType"):
        if not isinstance(entry.get(key, ""), str):
            raise ValidationError(f"Invalid mapping entry for {new_id}: {key} must be a string")

    try:
        strategy = PreservationStrategy(entry.get("preservationStrategy", "exact-match"))
    except ValueError:
        raise ValidationError(
            f"Unknown preservation strategy for {new_id}: {entry.get('preservationStrategy')!r}"
        ) from None

    metadata = None
    if entry.get("metadata") is not None:
        raw = entry["metadata"]
        if not isinstance(raw, dict):
            raise ValidationError(f"Invalid metadata for {new_id}")
        metadata = MappingMetadata(
            created_at=_parse_timestamp(raw.get("createdAt"), f"{new_id}.metadata.createdAt"),
            updated_at=_parse_timestamp(raw.get("updatedAt"), f"{new_id}.metadata.updatedAt"),
        )

    return IdentifierMapping(
        original_id=entry["originalId"],
        new_id=entry["newId"],
        resource_type=entry["resourceType"],
        component_name=entry.get("componentName", ""),
        component_type=entry.get("componentType", ""),
        preservation_strategy=strategy,
        metadata=metadata,
    )


def _config_from_dict(raw: Any) -> DriftAvoidanceConfig:
    if not isinstance(raw, dict):
        raise ValidationError("driftAvoidanceConfig must be an object")
    values = {}
    for key, attr in (
        ("enableDeterministicNaming", "enable_deterministic_naming"),
        ("preserveResourceOrder", "preserve_resource_order"),
        ("validateBeforeApply", "validate_before_apply"),
    ):
        value = raw.get(key, True)
        if not isinstance(value, bool):
            raise ValidationError(f"driftAvoidanceConfig.{key} must be a boolean")
        values[attr] = value
    return DriftAvoidanceConfig(**values)


def _parse_timestamp(value: Any, name: str) -> datetime:
    if not isinstance(value, str):
        raise ValidationError(f"Missing {name} timestamp")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {name} timestamp: {value!r}") from None


class IdentifierMapStore:
    """Creates, persists and checks identifier maps."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    def generate(self, stack_name: str, environment: str | None = None) -> IdentifierMap:
        """Create an empty map with every drift-avoidance switch enabled."""
        now = datetime.now(UTC)
        return IdentifierMap(
            version=CURRENT_MAP_VERSION,
            stack_name=stack_name,
            environment=environment,
            created_at=now,
            updated_at=now,
            mappings={},
            drift_avoidance_config=DriftAvoidanceConfig(),
        )

    def adopt(
        self,
        stack_name: str,
        original_tree: ResourceTree,
        assignments: dict[str, ComponentAssignment],
        synthesized_tree: ResourceTree | None = None,
        environment: str | None = None,
    ) -> AdoptionResult:
        """Build a map that restores each deployed resource under its new component.

        ``assignments`` is keyed by the deployed identifier. The synthesized
        identifier is derived from the component name, component type and
        resource type. When two resources would map to the same synthesized
        identifier the first one wins and the clash is reported as a conflict.
        With ``synthesized_tree`` every derived identifier is checked against
        the template the platform actually produced.
        """
        identifier_map = self.generate(stack_name, environment)
        now = identifier_map.created_at
        mappings: dict[str, IdentifierMapping] = {}
        claims: dict[str, list[str]] = defaultdict(list)
        matches: dict[NamingMatch, int] = dict.fromkeys(NamingMatch, 0)
        warnings: list[str] = []

        for original_id, assignment in assignments.items():
            if original_id not in original_tree:
                warnings.append(f"Original resource not found for assignment: {original_id}")
                continue
            resource_type = original_tree[original_id].type
            new_id = expected_new_id(assignment, resource_type)
            claims[new_id].append(original_id)
            if new_id in mappings:
                continue

            if synthesized_tree is not None:
                if new_id not in synthesized_tree:
                    warnings.append(
                        f"Expected resource {new_id} for {original_id} is not in the "
                        "synthesized template"
                    )
                elif synthesized_tree[new_id].type != resource_type:
                    warnings.append(
                        f"Resource {new_id} for {original_id} has type "
                        f"{synthesized_tree[new_id].type}, expected {resource_type}"
                    )

            matches[classify_naming(original_id, new_id)] += 1
            mappings[new_id] = IdentifierMapping(
                original_id=original_id,
                new_id=new_id,
                resource_type=resource_type,
                component_name=assignment.component_name,
                component_type=assignment.component_type,
                metadata=MappingMetadata(created_at=now, updated_at=now),
            )
            self._logger.debug("Adopting %s (%s)", mappings[new_id].describe(), resource_type)

        conflicts = [
            f"Conflict: multiple resources would map to new ID '{new_id}': "
            f"{', '.join(original_ids)}"
            for new_id, original_ids in claims.items()
            if len(original_ids) > 1
        ]
        identifier_map = replace(identifier_map, mappings=mappings)
        conflicts.extend(self.detect_conflicts(identifier_map))

        self._logger.info(
            "Adopted %d of %d resources for %s (%d warnings, %d conflicts)",
            len(mappings),
            len(assignments),
            stack_name,
            len(warnings),
            len(conflicts),
        )
        return AdoptionResult(
            identifier_map=identifier_map,
            naming_matches=matches,
            warnings=warnings,
            conflicts=conflicts,
        )

    def validate(self, identifier_map: IdentifierMap) -> ValidationResult:
        """Check structure and conflicts. Never raises."""
        errors: list[str] = []

        if not identifier_map.version:
            errors.append("Missing version field")
        if not identifier_map.stack_name:
            errors.append("Missing stackName field")

        for new_id, mapping in identifier_map.mappings.items():
            if not mapping.original_id or not mapping.new_id or not mapping.resource_type:
                errors.append(f"Invalid mapping entry for {new_id}")
            elif mapping.new_id != new_id:
                errors.append(f"Mapping key mismatch for {new_id}: entry declares {mapping.new_id}")

        errors.extend(self.detect_conflicts(identifier_map))
        return ValidationResult(valid=not errors, errors=errors)

    def detect_conflicts(self, identifier_map: IdentifierMap) -> list[str]:
        """List duplicated original IDs and chained mappings."""
        claimed: dict[str, list[str]] = defaultdict(list)
        for new_id, mapping in identifier_map.mappings.items():
            claimed[mapping.original_id].append(new_id)

        conflicts = []
        for original_id, new_ids in claimed.items():
            if len(new_ids) > 1:
                conflicts.append(
                    f"Conflict: original ID '{original_id}' is claimed by multiple new IDs: "
                    f"{', '.join(sorted(new_ids))}"
                )

        # A chain A -> B, B -> C would rename B again on a second pass.
        for new_id, mapping in identifier_map.mappings.items():
            chained = [other for other in claimed.get(new_id, []) if other != new_id]
            if chained and mapping.original_id != new_id:
                conflicts.append(
                    f"Conflict: '{new_id}' is both a new ID (restored as "
                    f"'{mapping.original_id}') and the original ID of {', '.join(sorted(chained))}"
                )
        return conflicts

    def load(self, path: str | Path) -> IdentifierMap | None:
        """Read a map from disk. Returns None on any read or schema failure."""
        path = Path(path)
        if not path.exists():
            self._logger.debug("Identifier map file not found: %s", path)
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            identifier_map = identifier_map_from_dict(data)
        except (OSError, ValueError) as exc:
            self._logger.warning("Failed to load identifier map %s: %s", path, exc)
            return None

        self._logger.info(
            "Loaded identifier map for %s with %d mappings",
            identifier_map.stack_name,
            len(identifier_map.mappings),
        )
        return identifier_map

    def save(self, identifier_map: IdentifierMap, path: str | Path) -> None:
        """Write a map to disk with stable key ordering.

        Raises IdentifierMapIOError when the file cannot be written.
        """
        path = Path(path)
        payload = json.dumps(identifier_map_to_dict(identifier_map), indent=2, sort_keys=True)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(payload + "\n", encoding="utf-8")
        except OSError as exc:
            raise IdentifierMapIOError(f"Failed to save identifier map to {path}: {exc}") from exc
        self._logger.info("Saved identifier map to %s", path)

    def add_mapping(
        self, identifier_map: IdentifierMap, mapping: IdentifierMapping
    ) -> IdentifierMap:
        """Return a copy of the map with ``mapping`` added or replaced.

        Raises ConflictError when another mapping already restores the same
        original ID, or when the two would form a chain.
        """
        for new_id, existing in identifier_map.mappings.items():
            if new_id == mapping.new_id:
                continue
            if existing.original_id == mapping.original_id:
                raise ConflictError(
                    f"Conflict: original ID '{mapping.original_id}' is already claimed by {new_id}"
                )
            # Identity mappings rename nothing, so they cannot start a chain.
            if mapping.original_id == new_id and mapping.original_id != mapping.new_id:
                raise ConflictError(
                    f"Conflict: original ID '{mapping.original_id}' is the new ID of "
                    f"{existing.describe()}"
                )
            if existing.original_id == mapping.new_id:
                raise ConflictError(
                    f"Conflict: new ID '{mapping.new_id}' is the original ID of "
                    f"{existing.describe()}"
                )

        now = datetime.now(UTC)
        previous = identifier_map.mappings.get(mapping.new_id)
        created_at = previous.metadata.created_at if previous and previous.metadata else now
        mapping = replace(mapping, metadata=MappingMetadata(created_at=created_at, updated_at=now))

        mappings = dict(identifier_map.mappings)
        mappings[mapping.new_id] = mapping
        self._logger.info("Added identifier mapping %s", mapping.describe())
        return replace(identifier_map, mappings=mappings, updated_at=now)

    def remove_mapping(self, identifier_map: IdentifierMap, new_id: str) -> IdentifierMap:
        """Return a copy of the map without the mapping keyed by ``new_id``."""
        if new_id not in identifier_map.mappings:
            raise KeyError(new_id)
        mappings = {k: v for k, v in identifier_map.mappings.items() if k != new_id}
        self._logger.info("Removed identifier mapping for %s", new_id)
        return replace(identifier_map, mappings=mappings, updated_at=datetime.now(UTC))
