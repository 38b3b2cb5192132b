"""Read-only access to shard files."""

from __future__ import annotations

from typing import Any

from nocfl_index import router
from nocfl_index.bucket import Bucket
from nocfl_index.errors import InvalidArgumentError, NotFoundError


class IndexReader:
    """List and fetch shards. Reads may observe a shard mid-merge."""

    def __init__(self, bucket: Bucket) -> None:
        self.bucket = bucket

    def list_indices(self, prefix: str, type_name: str | None = None) -> list[str]:
        if not prefix:
            raise InvalidArgumentError("You must provide 'prefix'")
        root = f"{router.index_root(prefix, type_name)}/"
        return [key for key in self.bucket.iter_keys(root) if router.is_shard_key(key)]

    def get_index(self, prefix: str, type_name: str, file: str) -> list[dict[str, Any]] | None:
        """Return the shard contents, or ``None`` when the shard does not exist."""
        for name, value in (("prefix", prefix), ("type", type_name), ("file", file)):
            if not value:
                raise InvalidArgumentError(f"You must provide '{name}'")
        return self._read(router.shard_key(prefix, type_name, file))

    def get_shard(self, prefix: str, type_name: str, id: str) -> list[dict[str, Any]]:
        return self._read(router.route(prefix, type_name, id)) or []

    def search(self, prefix: str, type_name: str, id_prefix: str) -> list[dict[str, Any]]:
        """Entries whose id starts with ``id_prefix``, compared case-insensitively."""
        needle = id_prefix.lower()
        return [
            entry
            for entry in self.get_shard(prefix, type_name, id_prefix)
            if str(entry.get("id", "")).lower().startswith(needle)
        ]

    def _read(self, key: str) -> list[dict[str, Any]] | None:
        try:
            entries, _etag = self.bucket.get_json(key)
        except NotFoundError:
            return None
        return entries
