"""CLI entrypoint for driftguard."""

import json
import logging
import sys
from pathlib import Path

import click

from driftguard.adoption import assignments_from_dict
from driftguard.errors import ConflictError, IdentifierMapIOError
from driftguard.formatter import format_adoption, format_json, format_report, format_table
from driftguard.models import IdentifierMapping, PreservationStrategy, ResourceTree
from driftguard.planning import PlanningContext, PlanningIntegrator
from driftguard.store import IdentifierMapStore


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr.")
def main(verbose):
    """Preserve deployed resource identifiers and flag replacement drift."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _read_template_or_exit(path: Path) -> ResourceTree:
    try:
        return ResourceTree.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        click.echo(f"Error: cannot read template {path}: {exc}", err=True)
        sys.exit(2)


@main.command()
@click.argument("template", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--stack", "stack_name", required=True, envvar="DRIFTGUARD_STACK", help="Stack name.")
@click.option("--environment", default=None, envvar="DRIFTGUARD_ENVIRONMENT", help="Environment.")
@click.option(
    "--map",
    "map_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="DRIFTGUARD_MAP_PATH",
    help="Identifier map file.",
)
@click.option(
    "--original",
    "original_template",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Currently deployed template to check for deleted resources.",
)
@click.option("--no-drift-avoidance", is_flag=True, help="Skip drift analysis.")
@click.option("--no-validate", is_flag=True, help="Rewrite even when the map is invalid.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json", "table"]),
    default="text",
    help="Output format.",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the rewritten template here.",
)
def plan(
    template,
    stack_name,
    environment,
    map_path,
    original_template,
    no_drift_avoidance,
    no_validate,
    output_format,
    output,
):
    """Apply identifier preservation to a synthesized TEMPLATE."""
    tree = _read_template_or_exit(template)
    original_tree = _read_template_or_exit(original_template) if original_template else None

    context = PlanningContext(
        stack_name=stack_name,
        environment=environment,
        identifier_map_path=map_path,
        enable_drift_avoidance=not no_drift_avoidance,
        validate_before_plan=not no_validate,
        original_tree=original_tree,
    )
    result = PlanningIntegrator().apply_preservation_to_plan(tree, context)

    formatters = {
        "text": format_report,
        "json": format_json,
        "table": format_table,
    }
    click.echo(formatters[output_format](result))

    if not result.success:
        sys.exit(2)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(result.tree.to_dict(), indent=2) + "\n", encoding="utf-8")

    report = result.drift_avoidance_report
    sys.exit(1 if report is not None and report.unresolved else 0)


@main.group(name="map")
def map_group():
    """Administer identifier map files."""


def _load_or_exit(store: IdentifierMapStore, path: Path):
    identifier_map = store.load(path)
    if identifier_map is None:
        click.echo(f"Error: cannot load identifier map {path}", err=True)
        sys.exit(2)
    return identifier_map


def _save_or_exit(store: IdentifierMapStore, identifier_map, path: Path) -> None:
    try:
        store.save(identifier_map, path)
    except IdentifierMapIOError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


@map_group.command("init")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--stack", "stack_name", required=True, envvar="DRIFTGUARD_STACK", help="Stack name.")
@click.option("--environment", default=None, envvar="DRIFTGUARD_ENVIRONMENT", help="Environment.")
@click.option("--force", is_flag=True, help="Overwrite an existing map.")
def map_init(path, stack_name, environment, force):
    """Create an empty identifier map at PATH."""
    if path.exists() and not force:
        click.echo(f"Error: {path} already exists (use --force to overwrite).", err=True)
        sys.exit(2)
    store = IdentifierMapStore()
    _save_or_exit(store, store.generate(stack_name, environment), path)
    click.echo(f"Created identifier map for {stack_name} at {path}")


@map_group.command("add")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--original-id", required=True, help="Deployed identifier to restore.")
@click.option("--new-id", required=True, help="Synthesized identifier to replace.")
@click.option("--resource-type", required=True, help="Resource type of the node.")
@click.option("--component-name", default="", help="Owning component name.")
@click.option("--component-type", default="", help="Owning component type.")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in PreservationStrategy]),
    default=PreservationStrategy.EXACT_MATCH.value,
    help="Preservation strategy.",
)
def map_add(path, original_id, new_id, resource_type, component_name, component_type, strategy):
    """Add or replace a mapping in the map at PATH."""
    store = IdentifierMapStore()
    identifier_map = _load_or_exit(store, path)
    mapping = IdentifierMapping(
        original_id=original_id,
        new_id=new_id,
        resource_type=resource_type,
        component_name=component_name,
        component_type=component_type,
        preservation_strategy=PreservationStrategy(strategy),
    )
    try:
        identifier_map = store.add_mapping(identifier_map, mapping)
    except ConflictError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    _save_or_exit(store, identifier_map, path)
    click.echo(f"Added mapping {mapping.describe()}")


@map_group.command("remove")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new_id")
def map_remove(path, new_id):
    """Remove the mapping for NEW_ID from the map at PATH."""
    store = IdentifierMapStore()
    identifier_map = _load_or_exit(store, path)
    try:
        identifier_map = store.remove_mapping(identifier_map, new_id)
    except KeyError:
        click.echo(f"Error: no mapping for {new_id} in {path}", err=True)
        sys.exit(1)
    _save_or_exit(store, identifier_map, path)
    click.echo(f"Removed mapping for {new_id}")


@map_group.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def map_validate(path):
    """Check the map at PATH for schema problems and conflicts."""
    store = IdentifierMapStore()
    identifier_map = _load_or_exit(store, path)
    result = store.validate(identifier_map)
    if result.valid:
        click.echo(f"{path}: {len(identifier_map.mappings)} mappings, no problems found")
        return
    for error in result.errors:
        click.echo(error)
    sys.exit(1)


@map_group.command("adopt")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--stack", "stack_name", required=True, envvar="DRIFTGUARD_STACK", help="Stack name.")
@click.option("--environment", default=None, envvar="DRIFTGUARD_ENVIRONMENT", help="Environment.")
@click.option(
    "--original",
    "original_template",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Currently deployed template.",
)
@click.option(
    "--assignments",
    "assignments_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file assigning deployed resources to components.",
)
@click.option(
    "--synthesized",
    "synthesized_template",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Template synthesized by the platform, to check the derived identifiers.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing map.")
def map_adopt(
    path,
    stack_name,
    environment,
    original_template,
    assignments_path,
    synthesized_template,
    force,
):
    """Generate the identifier map at PATH for a stack adopted by the platform."""
    if path.exists() and not force:
        click.echo(f"Error: {path} already exists (use --force to overwrite).", err=True)
        sys.exit(2)

    original_tree = _read_template_or_exit(original_template)
    synthesized_tree = (
        _read_template_or_exit(synthesized_template) if synthesized_template else None
    )
    try:
        assignments = assignments_from_dict(
            json.loads(assignments_path.read_text(encoding="utf-8"))
        )
    except (OSError, ValueError) as exc:
        click.echo(f"Error: cannot read assignments {assignments_path}: {exc}", err=True)
        sys.exit(2)

    store = IdentifierMapStore()
    result = store.adopt(
        stack_name,
        original_tree,
        assignments,
        synthesized_tree=synthesized_tree,
        environment=environment,
    )
    click.echo(format_adoption(result, str(path)))
    if result.conflicts:
        sys.exit(1)
    _save_or_exit(store, result.identifier_map, path)
    click.echo(f"Saved identifier map to {path}")
