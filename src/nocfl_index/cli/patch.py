"""nocfl-index patch, merge and pending: write-side commands."""

from __future__ import annotations

import typer

from nocfl_index.cli import _exitcodes as ec
from nocfl_index.cli._output import print_error, print_object
from nocfl_index.cli._storage import open_indexer
from nocfl_index.errors import InvalidArgumentError


def patch_cmd(
    action: str = typer.Argument(..., help="PUT or DELETE"),
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: str = typer.Argument(..., metavar="TYPE", help="Object type"),
    id: str = typer.Argument(..., metavar="ID", help="Object identifier"),
    splay: int = typer.Option(1, "--splay", min=1, help="Id characters used in the object path"),
) -> None:
    """Queue an index patch and attempt to merge the namespace."""
    from nocfl_index.cli import state

    try:
        indexer = open_indexer()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        result = indexer.patch_index(action.upper(), prefix, type_name, id, splay=splay)
    except InvalidArgumentError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)

    print_object(result.to_dict(), json_mode=state.json_output)
    if result.status == "failed":
        raise typer.Exit(ec.EXECUTION_FAILURE)


def merge_cmd(
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: str = typer.Argument(..., metavar="TYPE", help="Object type"),
) -> None:
    """Merge all pending patches of a namespace into its shards."""
    from nocfl_index.cli import state

    try:
        indexer = open_indexer()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        result = indexer.merge_namespace(prefix, type_name)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    print_object(result.to_dict(), json_mode=state.json_output)


def pending_cmd(
    prefix: str = typer.Argument(..., help="Object prefix"),
    type_name: str = typer.Argument(..., metavar="TYPE", help="Object type"),
) -> None:
    """List patches waiting to be merged."""
    from nocfl_index.cli import state

    try:
        indexer = open_indexer()
        keys = indexer.pending_patches(prefix, type_name)
    except InvalidArgumentError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)

    if state.json_output:
        print_object(keys, json_mode=True)
    else:
        for key in keys:
            print(key)
