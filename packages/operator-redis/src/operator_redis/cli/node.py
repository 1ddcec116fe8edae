"""Node lifecycle CLI commands.

- setup: validate settings, remap identities and write redis.conf
- run: setup, then start and supervise redis-server (container entrypoint)
- bootstrap: run cluster bootstrap against already running nodes
- remap: refresh nodes.json and rewrite changed addresses in nodes.conf
- health: PING and optional cluster_state check (container healthcheck)

Settings come from REDIS_* environment variables (and *_FILE secrets);
health-check knobs use HC_* variables as option fallbacks.
"""

import asyncio

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from operator_redis.client import ConnectionFactory
from operator_redis.config import RedisSettings, load_settings
from operator_redis.exceptions import (
    BootstrapFailure,
    ConfigFileError,
    TransientNetworkError,
    ValidationError,
)
from operator_redis.health import ClusterCheckMode, check_health
from operator_redis.orchestrator import ClusterBootstrap
from operator_redis.supervisor import Supervisor, remap_identities, setup

console = Console()
err_console = Console(stderr=True)

# Errors reported as a one-line reason and exit code 1
OPERATOR_ERRORS = (ValidationError, ConfigFileError, TransientNetworkError, BootstrapFailure)


def load_or_exit() -> RedisSettings:
    """Load settings, printing every invalid variable and exiting 1 on failure."""
    try:
        return load_settings()
    except pydantic.ValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            err_console.print(f"[red]Invalid setting {location}: {error['msg']}[/red]")
        raise typer.Exit(1)


def _fail(error: Exception) -> None:
    if isinstance(error, ValidationError):
        for message in error.errors:
            err_console.print(f"[red]✗ {message}[/red]")
    else:
        err_console.print(f"[red]✗ {error}[/red]")
    raise typer.Exit(1)


def setup_command() -> None:
    """Validate settings, remap node identities and write redis.conf."""
    settings = load_or_exit()
    try:
        asyncio.run(setup(settings))
    except OPERATOR_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/green] Wrote {settings.conf_file}")


def run_command(
    skip_setup: bool = typer.Option(False, "--skip-setup", help="Start redis-server with the existing redis.conf"),
) -> None:
    """
    Set up the node, start redis-server and bootstrap the cluster.

    Exits with redis-server's exit code, or 1 if setup, local readiness or
    cluster bootstrap failed.
    """
    settings = load_or_exit()
    try:
        code = asyncio.run(Supervisor(settings).run(skip_setup=skip_setup))
    except OPERATOR_ERRORS as e:
        _fail(e)
    raise typer.Exit(code)


def bootstrap_command() -> None:
    """Form the cluster from REDIS_NODES if this node is the creator."""
    settings = load_or_exit()

    async def _bootstrap() -> None:
        outcome = await ClusterBootstrap.from_settings(settings).run()
        table = Table(title="Cluster bootstrap")
        table.add_column("State", style="green")
        table.add_column("Formed", justify="center")
        table.add_column("Sockets")
        table.add_column("Elapsed", justify="right")
        table.add_row(
            outcome.state.value,
            "yes" if outcome.formed else "no",
            " ".join(str(s) for s in outcome.sockets) or "-",
            f"{outcome.elapsed_s:.1f}s",
        )
        console.print(table)

    try:
        asyncio.run(_bootstrap())
    except OPERATOR_ERRORS as e:
        _fail(e)


def remap_command() -> None:
    """Rewrite nodes.conf addresses for peers whose IP changed."""
    settings = load_or_exit()
    try:
        changes = asyncio.run(remap_identities(settings))
    except OPERATOR_ERRORS as e:
        _fail(e)

    if not changes:
        console.print("[dim]No address changes.[/dim]")
        return
    table = Table(title=str(settings.cluster_nodes_file))
    table.add_column("Old IP", style="red")
    table.add_column("New IP", style="green")
    for old, new in changes.items():
        table.add_row(old, new)
    console.print(table)


def health_command(
    timeout: float = typer.Option(1.0, "--timeout", envvar="HC_TIMEOUT", help="Seconds per round-trip"),
    retries: int = typer.Option(1, "--retries", envvar="HC_RETRIES", help="PING attempts"),
    cluster_check: ClusterCheckMode = typer.Option(
        ClusterCheckMode.AUTO,
        "--cluster-check",
        envvar="HC_CLUSTER_CHECK",
        case_sensitive=False,
        help="auto checks cluster_state whenever cluster mode is enabled",
    ),
) -> None:
    """Exit 0 when the local node answers PONG (and the cluster is ok)."""
    settings = load_or_exit()
    connect = ConnectionFactory.from_settings(settings, timeout_s=timeout)
    result = asyncio.run(
        check_health(
            connect,
            settings.host,
            settings.data_port,
            mode=cluster_check,
            cluster_enabled=settings.cluster_enabled,
            retries=retries,
        )
    )
    if not result.healthy:
        err_console.print(result.reason, markup=False, highlight=False)
        raise typer.Exit(1)
