"""
Utility functions for CLI commands.

This module provides helpers for formatted output and step progress.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import click
from rich.console import Console
from rich.status import Status
from rich.table import Table

console = Console()


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


@contextmanager
def step_progress(message: str) -> Generator[None, None, None]:
    """Context manager with live spinner for step progress.

    Shows a Rich spinner with message while the context is active,
    then shows "✓ message" on success or "✗ message" on failure.

    Args:
        message: The step description to display
    """
    status = Status(f"[cyan]{message}...[/cyan]", spinner="dots", console=console)
    status.start()

    try:
        yield
        status.stop()
        console.print(f"[green]✓[/green] {message}")
    except Exception:
        status.stop()
        console.print(f"[red]✗[/red] {message}")
        raise


def format_count(count: int) -> str:
    """Format large numbers with thousands separator."""
    return f"{count:,}"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_counts(title: str, written: dict[str, int], patched: dict[str, int] | None = None) -> None:
    """Print per-object-type record counts."""
    patched = patched or {}
    object_types = list(dict.fromkeys([*written, *patched]))
    rows = [
        [object_type, format_count(written.get(object_type, 0)), format_count(patched.get(object_type, 0))]
        for object_type in object_types
    ]
    print_table(title, ["Object", "Written", "Patched"], rows)
