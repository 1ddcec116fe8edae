"""redis.conf directive CLI commands.

- get: print the value of a directive (exit 1 when absent)
- set: write a directive (scalar keys replaced in place, `save` appended)
- unset: remove every line for a directive, commented or not
"""

from pathlib import Path

import typer
from rich.console import Console

from operator_redis.cli.node import load_or_exit
from operator_redis.conf import RedisConf
from operator_redis.exceptions import ConfigFileError

conf_app = typer.Typer(help="Read and edit redis.conf directives")

console = Console()
err_console = Console(stderr=True)


def _conf_path(path: Path | None) -> Path:
    if path is not None:
        return path
    return load_or_exit().conf_file


def _load(path: Path | None) -> RedisConf:
    try:
        return RedisConf.load(_conf_path(path))
    except ConfigFileError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _save(conf: RedisConf) -> None:
    try:
        conf.save()
    except ConfigFileError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _file_option():
    return typer.Option(None, "--file", "-f", envvar="REDIS_CONF_FILE", help="redis.conf to operate on")


@conf_app.command("get")
def get_directive(
    key: str = typer.Argument(..., help="Directive name, e.g. requirepass"),
    file: Path = _file_option(),
) -> None:
    """Print the value of a directive."""
    value = _load(file).get(key)
    if value is None:
        err_console.print(f"[yellow]{key} is not set[/yellow]")
        raise typer.Exit(1)
    console.print(value, markup=False, highlight=False)


@conf_app.command("set")
def set_directive(
    key: str = typer.Argument(..., help="Directive name"),
    value: str = typer.Argument("", help="Value (empty writes \"\")"),
    file: Path = _file_option(),
) -> None:
    """Set a directive."""
    conf = _load(file)
    conf.set(key, value)
    _save(conf)


@conf_app.command("unset")
def unset_directive(
    key: str = typer.Argument(..., help="Directive name"),
    file: Path = _file_option(),
) -> None:
    """Remove every line for a directive."""
    conf = _load(file)
    conf.unset(key)
    _save(conf)
