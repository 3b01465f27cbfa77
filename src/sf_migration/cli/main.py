"""
Main CLI entry point for SF Tree Migrate.

This module provides the command-line interface for migrating record trees
between Salesforce orgs.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from sf_migration import __version__
from sf_migration.cli.commands import analyze as analyze_commands
from sf_migration.cli.commands import export as export_commands
from sf_migration.cli.commands import migrate as migrate_commands
from sf_migration.cli.context import MigrationContext
from sf_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="sf-migrate")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to settings file (YAML)",
    envvar="SF_MIGRATE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="SF_MIGRATE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/migration.log)",
    envvar="SF_MIGRATE_LOG_FILE",
)
@click.option("--debug", "-d", is_flag=True, help="Shortcut for --log-level DEBUG")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
    debug: bool,
) -> None:
    """SF Tree Migrate - Copy a tree of related records between Salesforce orgs.

    Examples:

        # Migrate an account tree from dev to qa
        sf-migrate migrate -s dev -t qa -e export.json

        # Rehearse without writing to the target
        sf-migrate migrate -s dev -t qa -e export.json --dry-run

        # Find records the tree references but does not own
        sf-migrate analyze-references -s dev -e export.json --output deps.json

        # Write sObject-tree files and an import plan
        sf-migrate export -s dev -e export.json --output-dir _output
    """
    if debug:
        log_level = "DEBUG"

    effective_log_file = str(log_file) if log_file else "logs/migration.log"
    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


cli.add_command(migrate_commands.migrate)
cli.add_command(analyze_commands.analyze_references)
cli.add_command(export_commands.export)


def main() -> int:
    """Main entry point for CLI."""
    try:
        rv = cli(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.Abort:
        click.echo("Aborted!", err=True)
        return 1
    return rv if isinstance(rv, int) else 0


if __name__ == "__main__":
    sys.exit(main())
