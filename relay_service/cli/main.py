"""Main CLI entry point for relay-service management commands."""

import click

from relay_service.cli.commands import delivery, outbox, retention, server
from relay_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="relay-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Relay Service CLI - operate the outbox, delivery queue and retention.

    \b
    Command Groups:
      outbox     Inspect, requeue and drain the transactional outbox
      delivery   Inspect, requeue and drain notification delivery
      retention  Run the terminal-row cleanup
      server     Run the API and background workers

    \b
    Quick Start:
      relay-service server run
      relay-service outbox failed
      relay-service outbox requeue --all
      relay-service retention sweep
    """
    ctx.ensure_object(dict)


cli.add_command(outbox.outbox)
cli.add_command(delivery.delivery)
cli.add_command(retention.retention)
cli.add_command(server.server)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
