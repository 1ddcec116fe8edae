"""Operator Redis CLI - Redis Cluster node bootstrap and maintenance."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from operator_redis.cli.conf import conf_app
from operator_redis.cli.node import (
    bootstrap_command,
    health_command,
    remap_command,
    run_command,
    setup_command,
)

app = typer.Typer(
    name="operator-redis",
    help="Bootstrap and maintain a Redis Cluster node",
    no_args_is_help=True,
)

# Add command groups
app.add_typer(conf_app, name="conf")

app.command("setup")(setup_command)
app.command("run")(run_command)
app.command("bootstrap")(bootstrap_command)
app.command("remap")(remap_command)
app.command("health")(health_command)


def configure_logging(debug: bool) -> None:
    """Route stdlib logging to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=debug, show_path=debug)],
        force=True,
    )


@app.callback()
def main_callback(
    debug: bool = typer.Option(False, "--debug", envvar="REDIS_DEBUG", help="Enable debug logging"),
) -> None:
    configure_logging(debug)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
