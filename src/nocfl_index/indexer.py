"""Public entry point for maintaining and reading object indices."""

from __future__ import annotations

import time
from typing import Any, Callable

from loguru import logger

from nocfl_index import router
from nocfl_index.bucket import Bucket
from nocfl_index.config import IndexConfig
from nocfl_index.errors import LockTimeoutError, MergeFailedError
from nocfl_index.lock import LockCoordinator
from nocfl_index.merger import IndexMerger, MergeResult, dedupe_by_id
from nocfl_index.patches import PatchWriter
from nocfl_index.reader import IndexReader
from nocfl_index.walker import Walker


class Indexer:
    """Handle the id indices of objects stored in an S3 bucket.

    Writers never touch shard files directly. ``patch_index`` queues a patch,
    waits a short random delay, then tries to merge the whole backlog of the
    namespace under its lock. Whichever caller wins the lock converges the
    shards for everyone.
    """

    def __init__(
        self,
        bucket: Bucket,
        config: IndexConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bucket = bucket
        self.config = config or IndexConfig()
        self._sleep = sleep
        self.patches = PatchWriter(bucket, self.config)
        self.lock = LockCoordinator(bucket, self.config, sleep=sleep)
        self.merger = IndexMerger(bucket, self.lock, self.config)
        self.reader = IndexReader(bucket)
        self.walker = Walker(bucket)

    @classmethod
    def from_config(cls, bucket_name: str, config: IndexConfig | None = None) -> Indexer:
        config = config or IndexConfig()
        return cls(Bucket(bucket_name, config=config), config)

    # --- Writes ---

    def patch_index(
        self, action: str, prefix: str, type_name: str, id: str, splay: int = 1
    ) -> MergeResult:
        """Add (``PUT``) or remove (``DELETE``) one entry of the index.

        Returns once the patch is stored and a merge has been attempted.
        Invalid arguments raise ``InvalidArgumentError``; a failed merge is
        logged and reported in the result, and the patch stays queued.
        """
        key = self.patches.write(action, prefix, type_name, id, splay)
        self._sleep(self.patches.splay_delay())
        try:
            return self.merger.merge(prefix, type_name)
        except MergeFailedError as e:
            logger.error(f"{e}; {key} stays queued for the next merge")
            return MergeResult.failed(prefix, type_name, e.reason)

    def merge_namespace(self, prefix: str, type_name: str) -> MergeResult:
        return self.merger.merge(prefix, type_name)

    def pending_patches(self, prefix: str, type_name: str) -> list[str]:
        return self.patches.pending(prefix, type_name)

    def create_indices(self, prefix: str | None = None) -> list[str]:
        """Rebuild every shard from the objects' identifier files.

        Shards are written under their namespace lock; patches queued meanwhile
        are left for the next merge. Shards of a rebuilt namespace that no
        longer match any object are removed.
        """
        namespaces: dict[str, tuple[str, str]] = {}
        shards: dict[str, dict[str, list[dict[str, Any]]]] = {}
        for obj in self.walker.walk(prefix):
            root = router.namespace_root(obj["prefix"], obj["type"])
            namespaces.setdefault(root, (obj["prefix"], obj["type"]))
            shard = router.route(obj["prefix"], obj["type"], obj["id"])
            shards.setdefault(root, {}).setdefault(shard, []).append(obj)

        written: list[str] = []
        for root, (ns_prefix, ns_type) in namespaces.items():
            with self.lock.hold(ns_prefix, ns_type) as handle:
                if handle is None:
                    raise LockTimeoutError(
                        router.lock_key(ns_prefix, ns_type), self.config.lock_max_attempts
                    )
                for shard, entries in shards[root].items():
                    self.lock.ensure_lease_safe(handle)
                    ordered = sorted(dedupe_by_id(entries), key=lambda e: e["id"])
                    self.bucket.put_json(shard, ordered)
                    written.append(shard)
                stale = [
                    key
                    for key in self.reader.list_indices(ns_prefix, ns_type)
                    if key not in shards[root]
                ]
                if stale:
                    self.bucket.delete_objects(stale)
            logger.info(f"Rebuilt {len(shards[root])} shard(s) under {root}")
        return written

    # --- Reads ---

    def list_indices(self, prefix: str, type_name: str | None = None) -> list[str]:
        return self.reader.list_indices(prefix, type_name)

    def get_index(self, prefix: str, type_name: str, file: str) -> list[dict[str, Any]] | None:
        return self.reader.get_index(prefix, type_name, file)

    def search(self, prefix: str, type_name: str, id_prefix: str) -> list[dict[str, Any]]:
        return self.reader.search(prefix, type_name, id_prefix)
