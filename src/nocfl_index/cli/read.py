"""nocfl-index list, get and search: read-side commands."""

from __future__ import annotations

from typing import Optional

import typer

from nocfl_index.cli import _exitcodes as ec
from nocfl_index.cli._output import print_error, print_object, print_table
from nocfl_index.cli._storage import open_indexer

_HEADERS = ["prefix", "type", "id", "splay"]


def _rows(entries: list[dict]) -> list[list[object]]:
    return [[entry.get(h) for h in _HEADERS] for entry in entries]


def list_cmd(
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: Optional[str] = typer.Option(None, "--type", help="Restrict to one type"),
) -> None:
    """List shard files."""
    from nocfl_index.cli import state

    try:
        keys = open_indexer().list_indices(prefix, type_name)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)

    if state.json_output:
        print_object(keys, json_mode=True)
    else:
        for key in keys:
            print(key)


def get_cmd(
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: str = typer.Argument(..., metavar="TYPE", help="Object type"),
    file: str = typer.Argument(..., help="Shard file name, e.g. a.json"),
) -> None:
    """Print the entries of one shard."""
    from nocfl_index.cli import state

    try:
        entries = open_indexer().get_index(prefix, type_name, file)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)

    if entries is None:
        print_error(f"Index file '{file}' does not exist")
        raise typer.Exit(ec.NOT_FOUND)
    print_table(_HEADERS, _rows(entries), json_mode=state.json_output)


def search_cmd(
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: str = typer.Argument(..., metavar="TYPE", help="Object type"),
    id_prefix: str = typer.Argument(..., metavar="ID_PREFIX", help="Leading id characters"),
) -> None:
    """Find entries whose id starts with ID_PREFIX."""
    from nocfl_index.cli import state

    try:
        entries = open_indexer().search(prefix, type_name, id_prefix)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)
    print_table(_HEADERS, _rows(entries), json_mode=state.json_output)
