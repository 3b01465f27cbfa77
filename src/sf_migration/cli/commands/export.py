"""
Export command.

Writes the record tree as sObject-tree files plus an import plan, without
touching any target org.
"""

import asyncio
from pathlib import Path
from typing import Any

import click

from sf_migration.cli.context import MigrationContext
from sf_migration.cli.decorators import handle_errors, pass_context
from sf_migration.cli.utils import echo_success, print_table
from sf_migration.config import load_export_config
from sf_migration.migration.analyzer import DependencyAnalyzer, merge_dependency_configs
from sf_migration.reporting.artifacts import IMPORT_PLAN_FILE, TreeExporter
from sf_migration.schema.cache import SchemaCache
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_OUTPUT_DIR = "_output"


@click.command(name="export")
@click.option("--source-org", "-s", help="sf CLI alias of the source org")
@click.option(
    "--export-config",
    "-e",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Export configuration (JSON or YAML)",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help=f"Destination directory (default: {DEFAULT_OUTPUT_DIR})",
)
@pass_context
@handle_errors
def export(
    ctx: MigrationContext,
    source_org: str | None,
    export_config: Path,
    output_dir: Path | None,
) -> None:
    """Export a record tree to sObject-tree files and an import plan."""
    document = load_export_config(export_config)
    ctx.use_orgs(source_alias=source_org)
    destination = output_dir or Path(ctx.config.paths.output_dir or DEFAULT_OUTPUT_DIR)

    async def run_export() -> list[dict[str, Any]]:
        try:
            source = ctx.source_client
            schema = SchemaCache(source)
            dependency_configs = list(document.dependency_config)
            if document.discover_dependencies:
                analyzer = DependencyAnalyzer(
                    source,
                    schema,
                    skip_types=document.skip_sobject_dependencies,
                    key_matched_types=document.key_matched_types,
                )
                analysis = await analyzer.analyze(document.tree_config)
                dependency_configs = merge_dependency_configs(
                    dependency_configs, analysis.dependency_configs
                )
            return await TreeExporter(source, schema).export(
                document, destination, dependency_configs
            )
        finally:
            await ctx.close()

    plan = asyncio.run(run_export())

    print_table(
        "Import plan",
        ["#", "Object", "Files"],
        [[i, entry["sobject"], ", ".join(entry["files"])] for i, entry in enumerate(plan, 1)],
    )
    echo_success(f"Exported {len(plan)} object type(s); plan at {destination / IMPORT_PLAN_FILE}")
