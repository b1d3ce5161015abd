"""Command-line interface for cache maintenance.

Commands operate on the driver described by the configuration file given
with ``--config`` and the ``CACHEDRIVE_*`` environment variables. Caching is
always treated as enabled here, regardless of the ``enabled`` setting.

Commands:
    cachedrive clean: Remove expired entries
    cachedrive get: Print a cached value
    cachedrive has: Check whether an entry exists
    cachedrive inspect: Show the timestamps of an entry
    cachedrive delete: Remove an entry
    cachedrive stats: Show driver statistics
    cachedrive config: Show the resolved configuration
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cachedrive.base import InvalidConfigurationError
from cachedrive.cache import Cache
from cachedrive.config import load_config

app = typer.Typer(
    name="cachedrive",
    help="Inspect and maintain key-value caches",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

SECRET_OPTIONS = {"password", "url"}


# =============================================================================
# Type Aliases
# =============================================================================

IdArg = Annotated[str, typer.Argument(help="Entry identifier")]


# =============================================================================
# Helper Functions
# =============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load(ctx: typer.Context) -> dict[str, Any]:
    try:
        return load_config(ctx.obj.get("config"))
    except InvalidConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)


def _open_cache(ctx: typer.Context) -> Cache:
    """Build an enabled cache from the resolved configuration."""
    config = _load(ctx)
    config["enabled"] = True
    try:
        cache = Cache.from_config(config)
    except InvalidConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    return cache


def _format_timestamp(value: int) -> str:
    return datetime.fromtimestamp(value).isoformat(sep=" ", timespec="seconds")


def _format_value(value: Any) -> str:
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(value)


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{name}."))
        elif key in SECRET_OPTIONS and value:
            rows.append((name, "***"))
        else:
            rows.append((name, value))
    return rows


# =============================================================================
# Commands
# =============================================================================


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML, JSON or TOML)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Inspect and maintain key-value caches."""
    _configure_logging(verbose)
    ctx.obj = {"config": config}


@app.command(name="clean")
def clean_cmd(ctx: typer.Context) -> None:
    """Remove every expired entry."""
    with _open_cache(ctx) as cache:
        if not cache.clean():
            typer.echo("Error: cleanup did not complete", err=True)
            raise typer.Exit(1)
    typer.echo("Expired entries removed")


@app.command(name="get")
def get_cmd(ctx: typer.Context, id: IdArg) -> None:
    """Print the value stored under an id."""
    with _open_cache(ctx) as cache:
        value = cache.get(id)
    if value is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(_format_value(value))


@app.command(name="has")
def has_cmd(ctx: typer.Context, id: IdArg) -> None:
    """Check whether an unexpired entry exists (exit code 1 if not)."""
    with _open_cache(ctx) as cache:
        found = cache.has(id)
    typer.echo("true" if found else "false")
    if not found:
        raise typer.Exit(1)


@app.command(name="inspect")
def inspect_cmd(ctx: typer.Context, id: IdArg) -> None:
    """Show the timestamps of an entry."""
    with _open_cache(ctx) as cache:
        metadata = cache.get_metadata(id)
    if metadata is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)

    table = Table(title=f"Entry {id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("time", f"{metadata.time} ({_format_timestamp(metadata.time)})")
    table.add_row("expire", f"{metadata.expire} ({_format_timestamp(metadata.expire)})")
    table.add_row("ttl", f"{max(0, metadata.expire - int(time.time()))}s")
    console.print(table)


@app.command(name="delete")
def delete_cmd(ctx: typer.Context, id: IdArg) -> None:
    """Remove an entry."""
    with _open_cache(ctx) as cache:
        if not cache.delete(id):
            typer.echo(f"Error: could not delete {id}", err=True)
            raise typer.Exit(1)
    typer.echo(f"Deleted: {id}")


@app.command(name="stats")
def stats_cmd(ctx: typer.Context) -> None:
    """Show driver statistics."""
    with _open_cache(ctx) as cache:
        stats = cache.driver.stats()

    table = Table(title="Cache statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    for key, value in stats.items():
        table.add_row(key, str(value))
    console.print(table)


@app.command(name="config")
def config_cmd(ctx: typer.Context) -> None:
    """Show the resolved configuration."""
    config = _load(ctx)

    table = Table(title="Cache configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value")
    for key, value in _flatten(config):
        table.add_row(key, str(value))
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
