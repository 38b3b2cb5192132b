"""nocfl-index rebuild: regenerate shards from stored objects."""

from __future__ import annotations

from typing import Optional

import typer

from nocfl_index.cli import _exitcodes as ec
from nocfl_index.cli._output import print_error, print_object
from nocfl_index.cli._storage import open_indexer


def rebuild_cmd(
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Rebuild only this prefix"),
) -> None:
    """Walk the bucket and rewrite every shard from the objects' identifier files."""
    from nocfl_index.cli import state

    try:
        indexer = open_indexer()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        written = indexer.create_indices(prefix)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    print_object({"written": written, "count": len(written)}, json_mode=state.json_output)
