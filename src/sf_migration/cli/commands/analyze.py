"""
Analyze-references command.

Reports the records a tree references without owning them, as ready-to-use
dependency configurations.
"""

import asyncio
import json
from pathlib import Path

import click

from sf_migration.cli.context import MigrationContext
from sf_migration.cli.decorators import handle_errors, pass_context
from sf_migration.cli.utils import echo_info, echo_success, print_table, step_progress
from sf_migration.config import load_export_config
from sf_migration.migration.analyzer import DependencyAnalysis, DependencyAnalyzer
from sf_migration.schema.cache import SchemaCache
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="analyze-references")
@click.option("--source-org", "-s", help="sf CLI alias of the source org")
@click.option(
    "--export-config",
    "-e",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Export configuration (JSON or YAML)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the references and synthesized dependencyConfig to this JSON file",
)
@pass_context
@handle_errors
def analyze_references(
    ctx: MigrationContext,
    source_org: str | None,
    export_config: Path,
    output: Path | None,
) -> None:
    """Find records referenced by the tree that live outside it.

    Only the source org is read.
    """
    document = load_export_config(export_config)
    ctx.use_orgs(source_alias=source_org)

    async def run_analysis() -> DependencyAnalysis:
        try:
            source = ctx.source_client
            analyzer = DependencyAnalyzer(
                source,
                SchemaCache(source),
                skip_types=document.skip_sobject_dependencies,
                key_matched_types=document.key_matched_types,
            )
            with step_progress("Analyzing references"):
                return await analyzer.analyze(document.tree_config)
        finally:
            await ctx.close()

    analysis = asyncio.run(run_analysis())
    report = analysis.to_report()

    rows = [
        [field_name, target_type, len(ids)]
        for field_name, targets in report["references"].items()
        for target_type, ids in targets.items()
    ]
    if rows:
        print_table("External references", ["Field", "References", "Records"], rows)
    else:
        echo_info("The tree references no records outside itself")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(report, indent=4))
        echo_success(f"Dependency configuration written to {output}")
    elif rows:
        click.echo(json.dumps(report["dependencyConfig"], indent=4))
