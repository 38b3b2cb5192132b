"""CLI helpers for building an Indexer from the global options."""

from __future__ import annotations

from nocfl_index.config import IndexConfig
from nocfl_index.indexer import Indexer


def open_indexer() -> Indexer:
    """Open an Indexer on the bucket selected by --bucket / NOCFL_BUCKET."""
    from nocfl_index.cli import state

    if not state.bucket:
        raise ValueError("No bucket selected; pass --bucket or set NOCFL_BUCKET")
    return Indexer.from_config(state.bucket, IndexConfig.from_env())
