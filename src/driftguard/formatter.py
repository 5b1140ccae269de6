"""Output formatters for planning results."""

import json
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.text import Text
from rich.tree import Tree

from driftguard.adoption import AdoptionResult
from driftguard.analyzer import DriftReport, Severity

if TYPE_CHECKING:
    from driftguard.planning import PlanningResult

SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}

REPORT_TITLE = "Identifier Preservation Planning Report"
SUCCESS_BANNER = "✅ Identifier preservation applied successfully"
FAILURE_BANNER = "❌ Identifier preservation failed"
ADOPTION_TITLE = "Identifier Adoption Instructions"


def _heading(title: str, underline: str = "-") -> list[str]:
    return [title, underline * len(title)]


def format_report(result: "PlanningResult") -> str:
    """Format a planning result as deterministic plain text."""
    identifier_map = result.identifier_map
    environment = identifier_map.environment or "default"

    lines = _heading(REPORT_TITLE, "=")
    lines.append(f"Stack: {identifier_map.stack_name} ({environment})")
    lines.append("")
    lines.append(SUCCESS_BANNER if result.success else FAILURE_BANNER)
    lines.append(f"Applied {len(result.applied_mappings)} identifier mappings")
    for applied in result.applied_mappings:
        lines.append(f"  - {applied}")
    if result.stats is not None:
        lines.append(
            f"Mappings: {result.stats.total} total, {result.stats.applied} applied, "
            f"{result.stats.skipped} skipped"
        )

    if result.errors:
        lines.append("")
        lines.extend(_heading("Errors"))
        lines.extend(f"  - {error}" for error in result.errors)

    if result.warnings:
        lines.append("")
        lines.extend(_heading("Warnings"))
        lines.extend(f"  - {warning}" for warning in result.warnings)

    lines.append("")
    lines.extend(_heading("Drift Avoidance Summary"))
    report = result.drift_avoidance_report
    if report is None:
        lines.append("Drift analysis was not run.")
    else:
        cfg = identifier_map.drift_avoidance_config
        naming = "enabled" if cfg.enable_deterministic_naming else "disabled"
        lines.append(f"Risk level: {report.risk_level.name}")
        lines.append(f"Total resources: {report.summary.total_resources}")
        lines.append(f"Mapped resources: {report.summary.mapped_resources}")
        lines.append(f"Unmapped resources: {report.summary.unmapped_resources}")
        lines.append(f"Stateful resources: {report.summary.stateful_resources}")
        if report.summary.deleted_resources is not None:
            lines.append(f"Deleted stateful resources: {report.summary.deleted_resources}")
        lines.append(f"Deterministic naming: {naming}")
        if report.detected_drifts:
            lines.append("Detected drifts:")
            for drift in report.detected_drifts:
                lines.append(
                    f"  - [{drift.severity.name}] {drift.resource_id} ({drift.resource_type})"
                )

    lines.append("")
    lines.extend(_heading("Recommendations"))
    actions = report.recommended_actions if report else []
    if actions:
        for action in actions:
            lines.append(f"  - {action.action_type.value} {action.target}: {action.detail}")
    elif not result.success:
        lines.append("  - Fix the errors above and re-run planning")
    else:
        lines.append("  - None")

    return "\n".join(lines) + "\n"


def _report_to_dict(report: DriftReport) -> dict[str, Any]:
    return {
        "riskLevel": report.risk_level.label,
        "summary": {
            "totalResources": report.summary.total_resources,
            "mappedResources": report.summary.mapped_resources,
            "unmappedResources": report.summary.unmapped_resources,
            "statefulResources": report.summary.stateful_resources,
            "deletedResources": report.summary.deleted_resources,
        },
        "detectedDrifts": [
            {
                "resourceId": drift.resource_id,
                "resourceType": drift.resource_type,
                "severity": drift.severity.label,
                "reason": drift.reason,
            }
            for drift in report.detected_drifts
        ],
        "preservationIssues": report.preservation_issues,
        "recommendedActions": [
            {
                "actionType": action.action_type.value,
                "target": action.target,
                "detail": action.detail,
            }
            for action in report.recommended_actions
        ],
    }


def format_json(result: "PlanningResult") -> str:
    """Format a planning result as JSON."""
    report = result.drift_avoidance_report
    return json.dumps(
        {
            "success": result.success,
            "state": result.state.value,
            "stackName": result.identifier_map.stack_name,
            "environment": result.identifier_map.environment,
            "appliedMappings": result.applied_mappings,
            "stats": (
                {
                    "total": result.stats.total,
                    "applied": result.stats.applied,
                    "skipped": result.stats.skipped,
                }
                if result.stats
                else None
            ),
            "errors": result.errors,
            "warnings": result.warnings,
            "driftAvoidanceReport": _report_to_dict(report) if report else None,
        },
        indent=2,
    )


def format_table(result: "PlanningResult") -> str:
    """Format a planning result as a Rich tree view, returned as a string."""
    console = Console(record=True, width=120)
    status_style = "green" if result.success else "red"
    tree = Tree(
        Text.from_markup(
            f"[bold]{escape(result.identifier_map.stack_name)}[/bold] "
            f"[{status_style}]{'planned' if result.success else 'failed'}[/{status_style}]"
        )
    )

    if result.errors:
        errors = tree.add("[red]Errors[/red]")
        for error in result.errors:
            errors.add(Text(error))

    if result.applied_mappings:
        applied = tree.add(f"Applied mappings ({len(result.applied_mappings)})")
        for mapping in result.applied_mappings:
            applied.add(Text(mapping))

    if result.warnings:
        warnings = tree.add("[yellow]Warnings[/yellow]")
        for warning in result.warnings:
            warnings.add(Text(warning))

    report = result.drift_avoidance_report
    if report is not None:
        color = SEVERITY_COLORS.get(report.risk_level, "dim")
        drifts = tree.add(
            Text.from_markup(
                f"Drift: risk [{color}]{report.risk_level.name}[/{color}], "
                f"{report.summary.unmapped_resources}/{report.summary.total_resources} unmapped"
            )
        )
        for drift in report.detected_drifts:
            sev_color = SEVERITY_COLORS.get(drift.severity, "dim")
            drifts.add(
                Text.from_markup(
                    f"[{sev_color}]{escape(drift.resource_id)}[/{sev_color}]"
                    f" ({escape(drift.resource_type)}) [{drift.severity.name}]"
                )
            )

    console.print(tree)
    return console.export_text()


def format_adoption(result: AdoptionResult, map_path: str | None = None) -> str:
    """Format an adoption result as instructions for the operator."""
    identifier_map = result.identifier_map
    lines = _heading(ADOPTION_TITLE, "=")
    lines.append(f"Stack: {identifier_map.stack_name} ({identifier_map.environment or 'default'})")
    lines.append("")

    if not identifier_map.mappings:
        lines.append("No identifier mappings were generated.")
    else:
        lines.append(f"Generated {len(identifier_map.mappings)} identifier mappings")
        for mapping in identifier_map.mappings.values():
            lines.append(f"  - {mapping.describe()} ({mapping.resource_type})")
        lines.append("Naming matches:")
        for match, count in result.naming_matches.items():
            lines.append(f"  - {match.value}: {count} resources")

    if result.conflicts:
        lines.append("")
        lines.extend(_heading("Conflicts"))
        lines.extend(f"  - {conflict}" for conflict in result.conflicts)

    if result.warnings:
        lines.append("")
        lines.extend(_heading("Warnings"))
        lines.extend(f"  - {warning}" for warning in result.warnings)

    lines.append("")
    lines.extend(_heading("Next steps"))
    if result.conflicts:
        lines.append("  1. Resolve the conflicts above and re-run adoption")
    else:
        target = map_path or "the identifier map"
        lines.append(f"  1. Run: driftguard plan <template> --map {target} --original <deployed>")
        lines.append("  2. Confirm the report lists no deleted stateful resources")
    return "\n".join(lines) + "\n"
