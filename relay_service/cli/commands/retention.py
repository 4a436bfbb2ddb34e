"""Retention commands."""

from __future__ import annotations

import json
import sys

import click

from relay_service.cli.utils import coro, header, success, table, warning


@click.group(name="retention")
def retention() -> None:
    """Terminal-row cleanup commands."""


@retention.command()
@click.option("--json", "as_json", is_flag=True, help="Print the sweep result as JSON")
@coro
async def sweep(as_json: bool) -> None:
    """Run one retention sweep now."""
    from relay_service.infra.database.session import close_database
    from relay_service.tasks.retention import sweep as run_sweep

    try:
        result = await run_sweep()
    finally:
        await close_database()

    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        header("Retention Sweep")
        table(
            ["Step", "Deleted"],
            [(name, value) for name, value in result.items() if isinstance(value, int)],
        )

    if result["status"] != "success":
        for failure in result.get("errors", []):
            warning(f"{failure['step']}: {failure['error']}")
        sys.exit(1)
    success("Sweep complete")
