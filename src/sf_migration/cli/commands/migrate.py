"""
Migrate command.

Copies the configured record tree, and the records it depends on, from the
source org to the target org.
"""

import asyncio
from pathlib import Path

import click

from sf_migration.cli.context import MigrationContext
from sf_migration.cli.decorators import handle_errors, pass_context
from sf_migration.cli.utils import echo_info, echo_success, echo_warning, print_counts
from sf_migration.config import load_export_config
from sf_migration.migration.orchestrator import MigrationOrchestrator, MigrationSummary
from sf_migration.reporting.artifacts import write_run_report
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.command(name="migrate")
@click.option("--source-org", "-s", help="sf CLI alias of the source org")
@click.option("--target-org", "-t", help="sf CLI alias of the target org")
@click.option(
    "--export-config",
    "-e",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Export configuration (JSON or YAML)",
)
@click.option("--dry-run", is_flag=True, help="Read and rewrite records without writing to the target")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for per-object record dumps",
)
@pass_context
@handle_errors
def migrate(
    ctx: MigrationContext,
    source_org: str | None,
    target_org: str | None,
    export_config: Path,
    dry_run: bool,
    output_dir: Path | None,
) -> None:
    """Migrate a record tree from the source org to the target org.

    Dependencies are written first, then the tree in parent-before-child
    order, then references that could only be set after insert. On any
    failure every record this run created is deleted again.
    """
    document = load_export_config(export_config)
    ctx.use_orgs(source_org, target_org)

    config = ctx.config
    if dry_run:
        config.dry_run = True
    if output_dir:
        config.paths.output_dir = str(output_dir)

    if config.dry_run:
        echo_warning("Dry run: nothing will be written to the target org")

    async def run_migration() -> MigrationSummary:
        try:
            orchestrator = MigrationOrchestrator(
                document,
                source=ctx.source_client,
                target=ctx.target_client,
                config=config,
                state=ctx.migration_state,
            )
            try:
                return await orchestrator.migrate()
            finally:
                report = write_run_report(config.paths.report_dir, orchestrator.summary.to_dict())
                echo_info(f"Report written to {report}")
        finally:
            await ctx.close()

    summary = asyncio.run(run_migration())

    print_counts("Migrated records", dict(summary.written), dict(summary.patched))
    if summary.key_mappings:
        echo_info(f"Matched {summary.key_mappings} record(s) by business key")
    echo_success(
        f"Migration {summary.status}: {sum(summary.written.values())} record(s) written"
        + (" (dry run)" if summary.dry_run else "")
    )
