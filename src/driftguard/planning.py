"""Orchestrates validate, rewrite and drift analysis for one planning run."""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from driftguard.analyzer import DriftAnalyzer, DriftReport
from driftguard.formatter import format_report
from driftguard.models import IdentifierMap, ResourceTree
from driftguard.references import ReferenceRegistry, is_pseudo_parameter
from driftguard.rewriter import PreservationRewriter, RewriteStats, SkipReason
from driftguard.store import IdentifierMapStore


class PlanningState(StrEnum):
    NOT_STARTED = "not-started"
    VALIDATING = "validating"
    REWRITING = "rewriting"
    ANALYZING_DRIFT = "analyzing-drift"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: dict[PlanningState, set[PlanningState]] = {
    PlanningState.NOT_STARTED: {PlanningState.VALIDATING},
    PlanningState.VALIDATING: {PlanningState.REWRITING, PlanningState.FAILED},
    PlanningState.REWRITING: {PlanningState.ANALYZING_DRIFT, PlanningState.COMPLETED},
    PlanningState.ANALYZING_DRIFT: {PlanningState.COMPLETED},
    PlanningState.COMPLETED: set(),
    PlanningState.FAILED: set(),
}

# Skip reasons worth telling the operator about; a missing resource is routine.
SURFACED_SKIPS = {
    SkipReason.TYPE_MISMATCH,
    SkipReason.COLLISION,
    SkipReason.UNSUPPORTED_STRATEGY,
    SkipReason.CHAINED,
}


@dataclass(frozen=True)
class PlanningContext:
    """Inputs for one planning run.

    ``identifier_map`` takes precedence over ``identifier_map_path``; with
    neither, an empty map is generated for the stack. ``original_tree`` is the
    currently deployed template; when given, drift analysis also reports
    deployed stateful resources the new tree would delete.
    """

    stack_name: str
    environment: str | None = None
    identifier_map_path: str | Path | None = None
    identifier_map: IdentifierMap | None = None
    enable_drift_avoidance: bool = True
    validate_before_plan: bool = True
    original_tree: ResourceTree | None = None


@dataclass(frozen=True)
class PlanningResult:
    """Everything a planning command needs to report and decide."""

    success: bool
    tree: ResourceTree
    identifier_map: IdentifierMap
    applied_mappings: list[str] = field(default_factory=list)
    drift_avoidance_report: DriftReport | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    state: PlanningState = PlanningState.NOT_STARTED
    stats: RewriteStats | None = None


class PlanningIntegrator:
    """Runs one planning cycle as a small state machine.

    NOT_STARTED -> VALIDATING -> REWRITING -> [ANALYZING_DRIFT] -> COMPLETED,
    or VALIDATING -> FAILED when the map is unusable. A fresh run resets the
    machine; ``history`` records the states visited by the last run.
    """

    def __init__(
        self,
        store: IdentifierMapStore | None = None,
        rewriter: PreservationRewriter | None = None,
        analyzer: DriftAnalyzer | None = None,
        registry: ReferenceRegistry | None = None,
        logger: logging.Logger | None = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self._registry = registry or ReferenceRegistry()
        self._store = store or IdentifierMapStore(logger=self._logger)
        self._rewriter = rewriter or PreservationRewriter(
            registry=self._registry, logger=self._logger
        )
        self._analyzer = analyzer or DriftAnalyzer(logger=self._logger)
        self.state = PlanningState.NOT_STARTED
        self.history: list[PlanningState] = [self.state]

    def _transition(self, target: PlanningState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal planning transition {self.state} -> {target}")
        self._logger.debug("Planning state %s -> %s", self.state, target)
        self.state = target
        self.history.append(target)

    def apply_preservation_to_plan(
        self, tree: ResourceTree, context: PlanningContext
    ) -> PlanningResult:
        """Validate the map, rewrite the tree and analyze drift.

        Data problems never raise; they come back as ``success=False`` with
        ``errors`` filled in and the input tree untouched.
        """
        self.state = PlanningState.NOT_STARTED
        self.history = [self.state]
        errors: list[str] = []
        warnings: list[str] = []

        self._transition(PlanningState.VALIDATING)
        identifier_map, load_error = self._resolve_map(context)
        if load_error:
            if context.validate_before_plan:
                errors.append(load_error)
            else:
                warnings.append(f"{load_error}; continuing with an empty identifier map")

        if context.validate_before_plan and not errors:
            validation = self._store.validate(identifier_map)
            errors.extend(validation.errors)

        if errors:
            self._transition(PlanningState.FAILED)
            self._logger.warning(
                "Planning for %s failed validation with %d errors", context.stack_name, len(errors)
            )
            return PlanningResult(
                success=False,
                tree=tree,
                identifier_map=identifier_map,
                errors=errors,
                warnings=warnings,
                state=self.state,
            )

        self._transition(PlanningState.REWRITING)
        rewrite = self._rewriter.rewrite(tree, identifier_map)
        for skipped in rewrite.skipped:
            if skipped.reason in SURFACED_SKIPS:
                warnings.append(f"Skipped mapping {skipped.mapping.describe()}: {skipped.detail}")
        warnings.extend(self._dangling_references(rewrite.tree))

        report = None
        if context.enable_drift_avoidance:
            self._transition(PlanningState.ANALYZING_DRIFT)
            report = self._analyzer.analyze(rewrite.tree, rewrite, context.original_tree)
            warnings.extend(report.preservation_issues)

        self._transition(PlanningState.COMPLETED)
        return PlanningResult(
            success=True,
            tree=rewrite.tree,
            identifier_map=identifier_map,
            applied_mappings=[m.describe() for m in rewrite.applied],
            drift_avoidance_report=report,
            errors=errors,
            warnings=warnings,
            state=self.state,
            stats=rewrite.stats,
        )

    def generate_report(self, result: PlanningResult) -> str:
        """Render ``result`` as the plain-text planning report."""
        return format_report(result)

    def _resolve_map(self, context: PlanningContext) -> tuple[IdentifierMap, str | None]:
        if context.identifier_map is not None:
            return context.identifier_map, None

        if context.identifier_map_path is not None:
            path = Path(context.identifier_map_path)
            loaded = self._store.load(path)
            if loaded is not None:
                return loaded, None
            if path.exists():
                generated = self._store.generate(context.stack_name, context.environment)
                return generated, f"Identifier map {path} could not be loaded"
            self._logger.info("No identifier map at %s; generating an empty one", path)

        return self._store.generate(context.stack_name, context.environment), None

    def _dangling_references(self, tree: ResourceTree) -> list[str]:
        parameters = tree.sections.get("Parameters") or {}
        known = set(tree) | set(parameters)
        warnings = []
        for resource_id, resource in tree.items():
            targets = (
                self._registry.collect(resource.properties)
                + self._registry.collect(resource.attributes)
                + list(resource.depends_on)
            )
            missing = sorted({t for t in targets if t not in known and not is_pseudo_parameter(t)})
            for target in missing:
                warnings.append(f"Resource {resource_id} references unknown identifier {target}")
        return warnings
