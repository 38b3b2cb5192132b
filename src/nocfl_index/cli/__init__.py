"""nocfl-index CLI: operator console for bucket indices."""

from __future__ import annotations

import sys
from typing import Optional

import typer
from loguru import logger

from nocfl_index.cli import patch, read, rebuild

app = typer.Typer(
    name="nocfl-index",
    help="nocfl-index: inspect and maintain object indices in an S3 bucket.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    bucket: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("nocfl-index")
        except Exception:
            v = "unknown"
        print(f"nocfl-index {v}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    # Resolve sys.stderr per message so redirected streams are honoured.
    logger.add(
        lambda message: print(message, end="", file=sys.stderr),
        level="DEBUG" if verbose else "WARNING",
    )


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    bucket: Optional[str] = typer.Option(
        None,
        "--bucket",
        "-b",
        envvar="NOCFL_BUCKET",
        help="S3 bucket holding the repository",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log lock and merge activity"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all nocfl-index commands."""
    _configure_logging(verbose)
    state.bucket = bucket
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="patch")(patch.patch_cmd)
app.command(name="merge")(patch.merge_cmd)
app.command(name="pending")(patch.pending_cmd)
app.command(name="list")(read.list_cmd)
app.command(name="get")(read.get_cmd)
app.command(name="search")(read.search_cmd)
app.command(name="rebuild")(rebuild.rebuild_cmd)


def main() -> None:
    """Entry point for the nocfl-index CLI."""
    app()
