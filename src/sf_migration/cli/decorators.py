"""
Decorators for CLI commands.

This module provides decorators for error handling and context passing.
"""

import functools
from collections.abc import Callable

import click

from sf_migration.cli.context import MigrationContext
from sf_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    MigrationError,
    NetworkError,
    StateError,
)
from sf_migration.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass MigrationContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: MigrationContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        migration_ctx: MigrationContext = click_ctx.obj
        return f(migration_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Converts exceptions to user-friendly messages and exit codes.

    Exit codes:
        0: Success
        1: General error
        2: Configuration error
        3: Authentication error
        4: API or network error
        5: State error
        6: Migration error (rejected writes, run rolled back)
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except ConfigurationError as e:
            logger.error("configuration_error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            click.echo(
                "\nPlease check your settings file and export configuration.",
                err=True,
            )
            raise click.exceptions.Exit(2) from e

        except AuthenticationError as e:
            logger.error("authentication_error", error=str(e))
            click.echo(f"Authentication Error: {e}", err=True)
            click.echo(
                "\nPlease verify the org alias with 'sf org display --target-org <alias>'.",
                err=True,
            )
            raise click.exceptions.Exit(3) from e

        except (APIError, NetworkError) as e:
            logger.error("api_error", error=str(e))
            click.echo(f"API Error: {e}", err=True)
            if getattr(e, "status_code", None):
                click.echo(f"\nResponse status: {e.status_code}", err=True)
            raise click.exceptions.Exit(4) from e

        except StateError as e:
            logger.error("state_error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            click.echo(
                "\nThere was an error accessing migration state. "
                "The database may be corrupted or inaccessible.",
                err=True,
            )
            raise click.exceptions.Exit(5) from e

        except MigrationError as e:
            logger.error("migration_error", error=str(e))
            click.echo(f"Migration Error: {e}", err=True)
            click.echo(
                "\nRecords created by this run were rolled back. See the log for details.",
                err=True,
            )
            raise click.exceptions.Exit(6) from e

        except Exception as e:
            logger.error("unexpected_error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper
