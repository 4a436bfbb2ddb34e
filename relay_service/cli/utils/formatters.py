"""Output formatting utilities for CLI commands."""

from collections.abc import Sequence

import click


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    """Print a warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    """Print an info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    """Print a header message in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


def table(columns: Sequence[str], rows: Sequence[Sequence[object]], *, max_width: int = 60) -> None:
    """Print rows as a left-aligned text table, truncating long cells."""
    cells = [[_clip(value, max_width) for value in row] for row in rows]
    widths = [
        max([len(column), *(len(row[i]) for row in cells)]) for i, column in enumerate(columns)
    ]
    click.echo("  ".join(f"{column:<{widths[i]}}" for i, column in enumerate(columns)))
    click.echo("-" * (sum(widths) + 2 * (len(widths) - 1)))
    for row in cells:
        click.echo("  ".join(f"{value:<{widths[i]}}" for i, value in enumerate(row)))


def _clip(value: object, max_width: int) -> str:
    text = "" if value is None else str(value)
    text = text.replace("\n", " ")
    return text if len(text) <= max_width else text[: max_width - 3] + "..."
