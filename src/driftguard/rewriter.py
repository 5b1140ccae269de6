"""Rename mapped resources back to their original identifiers."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from driftguard.errors import TypeMismatchError
from driftguard.models import (
    IdentifierMap,
    IdentifierMapping,
    PreservationStrategy,
    Resource,
    ResourceTree,
)
from driftguard.references import ReferenceRegistry

# Logical identifier limit of the template format.
MAX_IDENTIFIER_LENGTH = 255


class SkipReason(StrEnum):
    """Why a mapping was not applied."""

    NOT_FOUND = "not-found"
    TYPE_MISMATCH = "type-mismatch"
    COLLISION = "collision"
    UNSUPPORTED_STRATEGY = "unsupported-strategy"
    INVALID = "invalid"
    CHAINED = "chained"


@dataclass(frozen=True)
class SkippedMapping:
    """A mapping the rewriter declined to apply."""

    mapping: IdentifierMapping
    reason: SkipReason
    detail: str


@dataclass(frozen=True)
class RewriteStats:
    total: int
    applied: int
    skipped: int


@dataclass(frozen=True)
class RewriteResult:
    """Output of one rewrite pass."""

    tree: ResourceTree
    stats: RewriteStats
    applied: list[IdentifierMapping] = field(default_factory=list)
    skipped: list[SkippedMapping] = field(default_factory=list)

    @property
    def substitutions(self) -> dict[str, str]:
        return {m.new_id: m.original_id for m in self.applied}


# A strategy decides which identifier a matched resource is restored to.
StrategyHandler = Callable[[IdentifierMapping, Resource], str]


def exact_match(mapping: IdentifierMapping, resource: Resource) -> str:
    return mapping.original_id


STRATEGY_HANDLERS: dict[PreservationStrategy, StrategyHandler] = {
    PreservationStrategy.EXACT_MATCH: exact_match,
}


class PreservationRewriter:
    """Applies an IdentifierMap to a ResourceTree.

    The input tree and map are never modified; a new tree is returned. A
    mapping is applied only when its ``new_id`` is present in the tree, its
    recorded resource type matches the node, its strategy is supported, and
    the restored identifier does not collide with a resource that stays in
    the tree. A mapping whose original ID is the new ID of another mapping is
    never applied, so rewriting an already rewritten tree changes nothing.
    With ``strict=True`` a type mismatch raises TypeMismatchError instead of
    being skipped.
    """

    def __init__(
        self,
        registry: ReferenceRegistry | None = None,
        strategies: dict[PreservationStrategy, StrategyHandler] | None = None,
        strict: bool = False,
        logger: logging.Logger | None = None,
    ):
        self._registry = registry or ReferenceRegistry()
        self._strategies = dict(STRATEGY_HANDLERS if strategies is None else strategies)
        self._strict = strict
        self._logger = logger or logging.getLogger(__name__)

    def rewrite(self, tree: ResourceTree, identifier_map: IdentifierMap) -> RewriteResult:
        table, applied, skipped = self._build_table(tree, identifier_map)

        # Pass 1: re-key substituted resources, keeping their position.
        renamed: dict[str, Resource] = {}
        for resource_id, resource in tree.items():
            renamed[table.get(resource_id, resource_id)] = resource

        if not identifier_map.drift_avoidance_config.preserve_resource_order:
            renamed = dict(sorted(renamed.items()))

        # Pass 2: repair every reference to a substituted identifier.
        resources = {
            resource_id: Resource(
                type=resource.type,
                properties=self._registry.walk(resource.properties, table),
                depends_on=tuple(table.get(dep, dep) for dep in resource.depends_on),
                attributes=self._registry.walk(resource.attributes, table),
            )
            for resource_id, resource in renamed.items()
        }
        sections = self._registry.walk(tree.sections, table)

        stats = RewriteStats(
            total=len(identifier_map.mappings),
            applied=len(applied),
            skipped=len(skipped),
        )
        self._logger.info(
            "Rewrote %s: %d mappings applied, %d skipped",
            identifier_map.stack_name,
            stats.applied,
            stats.skipped,
        )
        return RewriteResult(
            tree=ResourceTree(resources=resources, sections=sections),
            stats=stats,
            applied=applied,
            skipped=skipped,
        )

    def _build_table(
        self, tree: ResourceTree, identifier_map: IdentifierMap
    ) -> tuple[dict[str, str], list[IdentifierMapping], list[SkippedMapping]]:
        validate = identifier_map.drift_avoidance_config.validate_before_apply
        candidates: dict[str, str] = {}
        accepted: list[IdentifierMapping] = []
        skipped: list[SkippedMapping] = []

        def skip(mapping: IdentifierMapping, reason: SkipReason, detail: str) -> None:
            self._logger.debug("Skipping %s: %s", mapping.describe(), detail)
            skipped.append(SkippedMapping(mapping=mapping, reason=reason, detail=detail))

        for new_id, mapping in identifier_map.mappings.items():
            if new_id not in tree:
                skip(mapping, SkipReason.NOT_FOUND, f"{new_id} is not in the synthesized tree")
                continue

            actual_type = tree[new_id].type
            if actual_type != mapping.resource_type:
                error = TypeMismatchError(new_id, mapping.resource_type, actual_type)
                if self._strict:
                    raise error
                skip(mapping, SkipReason.TYPE_MISMATCH, str(error))
                continue

            chained_to = identifier_map.mappings.get(mapping.original_id)
            if chained_to is not None and mapping.original_id != new_id:
                skip(
                    mapping,
                    SkipReason.CHAINED,
                    f"Original ID {mapping.original_id} for {new_id} is itself renamed "
                    f"by {chained_to.describe()}",
                )
                continue

            handler = self._strategies.get(mapping.preservation_strategy)
            if handler is None:
                skip(
                    mapping,
                    SkipReason.UNSUPPORTED_STRATEGY,
                    f"Preservation strategy {mapping.preservation_strategy.value} "
                    f"is not supported for {new_id}",
                )
                continue

            target = handler(mapping, tree[new_id])
            if validate and not 0 < len(target) <= MAX_IDENTIFIER_LENGTH:
                skip(
                    mapping,
                    SkipReason.INVALID,
                    f"Original ID for {new_id} must be 1-{MAX_IDENTIFIER_LENGTH} characters",
                )
                continue

            candidates[new_id] = target
            accepted.append(mapping)

        # Dropping one colliding mapping can leave its resource in place and
        # create a new collision, so repeat until stable.
        while (collided := _first_collision(tree, accepted, candidates)) is not None:
            target = candidates.pop(collided.new_id)
            skip(
                collided,
                SkipReason.COLLISION,
                f"Original ID {target} for {collided.new_id} is already used in the tree",
            )

        applied = [m for m in accepted if m.new_id in candidates]
        for mapping in applied:
            self._logger.debug("Preserving %s (%s)", mapping.describe(), mapping.resource_type)

        # Identity entries need no substitution.
        table = {k: v for k, v in candidates.items() if k != v}
        return table, applied, skipped


def _first_collision(
    tree: ResourceTree, accepted: list[IdentifierMapping], candidates: dict[str, str]
) -> IdentifierMapping | None:
    claimed: set[str] = set()
    for mapping in accepted:
        if mapping.new_id not in candidates:
            continue
        target = candidates[mapping.new_id]
        staying = target in tree and target not in candidates and target != mapping.new_id
        if staying or target in claimed:
            return mapping
        claimed.add(target)
    return None
