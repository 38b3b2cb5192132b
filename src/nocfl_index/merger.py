"""Fold pending patches into shard files."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from nocfl_index import router
from nocfl_index.bucket import Bucket, PreconditionFailed
from nocfl_index.config import IndexConfig
from nocfl_index.errors import (
    LeaseExpiredError,
    MergeFailedError,
    NotFoundError,
    StorageBackendError,
)
from nocfl_index.lock import LockCoordinator, LockHandle
from nocfl_index.patches import Patch


@dataclass
class MergeResult:
    """Outcome of one ``merge`` call.

    ``status`` is ``applied`` when at least one pass consumed patches,
    ``skipped`` when there was nothing to do or the lock stayed busy, and
    ``failed`` when the caller swallowed a :class:`MergeFailedError`.
    """

    prefix: str
    type_name: str
    status: str
    applied: int = 0
    passes: int = 0
    shards: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def skipped(cls, prefix: str, type_name: str, reason: str) -> MergeResult:
        return cls(prefix=prefix, type_name=type_name, status="skipped", reason=reason)

    @classmethod
    def failed(cls, prefix: str, type_name: str, reason: str) -> MergeResult:
        return cls(prefix=prefix, type_name=type_name, status="failed", reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "type": self.type_name,
            "status": self.status,
            "applied": self.applied,
            "passes": self.passes,
            "shards": list(self.shards),
            "dropped": list(self.dropped),
            "deferred": list(self.deferred),
            "reason": self.reason,
        }


def dedupe_by_id(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep the first entry seen for each id."""
    seen: set[str] = set()
    out: list[dict[str, Any]] = []
    for entry in entries:
        entry_id = entry.get("id")
        if entry_id in seen:
            continue
        seen.add(entry_id)
        out.append(entry)
    return out


def apply_patches(entries: list[dict[str, Any]], patches: list[Patch]) -> list[dict[str, Any]]:
    """Apply PUT/DELETE patches in order, then dedupe by id (first wins)."""
    out = list(entries)
    for patch in patches:
        if patch.action == "PUT":
            out.append(patch.data.to_dict())
        else:
            out = [entry for entry in out if entry.get("id") != patch.data.id]
    return dedupe_by_id(out)


class IndexMerger:
    """Converge the shard files of one namespace with its patch backlog.

    Every merge consumes the whole backlog, not just the caller's own patch,
    and rewrites touched shards in full, so racing merges converge on the
    same shard contents.
    """

    def __init__(
        self,
        bucket: Bucket,
        lock: LockCoordinator,
        config: IndexConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bucket = bucket
        self.lock = lock
        self._config = config or IndexConfig()
        self._clock = clock

    def merge(self, prefix: str, type_name: str) -> MergeResult:
        try:
            handle = self.lock.acquire(prefix, type_name)
        except StorageBackendError as e:
            raise MergeFailedError(prefix, type_name, str(e)) from e
        if handle is None:
            return MergeResult.skipped(prefix, type_name, "lock busy")

        result = MergeResult.skipped(prefix, type_name, "no pending patches")
        try:
            with self.lock.keepalive(handle):
                self._drain(prefix, type_name, handle, result)
        except (StorageBackendError, LeaseExpiredError) as e:
            raise MergeFailedError(prefix, type_name, str(e)) from e
        finally:
            self.lock.release(handle)

        if result.status == "applied":
            logger.info(
                f"Merged {result.applied} patch(es) into {len(result.shards)} shard(s) "
                f"of {prefix}/{type_name} in {result.passes} pass(es)"
            )
        return result

    def _drain(self, prefix: str, type_name: str, handle: LockHandle, result: MergeResult) -> None:
        deadline = self._clock() + self._config.merge_deadline_s
        patch_prefix = router.patch_prefix(prefix, type_name)

        for pass_no in range(1, self._config.merge_max_passes + 1):
            keys = [k for k in self.bucket.iter_keys(patch_prefix) if k not in result.deferred]
            if not keys:
                return
            if pass_no > 1 and self._clock() >= deadline:
                logger.warning(
                    f"Merge deadline reached for {prefix}/{type_name}; "
                    f"{len(keys)} patch(es) left for the next merge"
                )
                return
            self._merge_pass(prefix, type_name, keys, handle, result)
            result.passes = pass_no

    def _read_patches(
        self, prefix: str, type_name: str, keys: list[str], result: MergeResult
    ) -> tuple[list[Patch], dict[str, str | None]]:
        namespace = router.namespace_root(prefix, type_name)
        patches: list[Patch] = []
        # key -> etag of the version read in this pass
        consumed: dict[str, str | None] = {}
        for key in keys:
            try:
                doc, etag = self.bucket.get_json(key)
                patch = Patch.from_dict(doc)
                if router.namespace_root(patch.data.prefix, patch.data.type) != namespace:
                    raise ValueError(f"patch targets {patch.data.prefix}/{patch.data.type}")
            except NotFoundError:
                # Consumed by a concurrent merge.
                continue
            except ValueError as e:
                logger.warning(f"Dropping unreadable patch {key}: {e}")
                result.dropped.append(key)
                consumed[key] = None
                continue
            except StorageBackendError as e:
                logger.warning(f"Deferring patch {key}: {e}")
                result.deferred.append(key)
                continue
            patches.append(patch)
            consumed[key] = etag

        # sorted() is stable, so listing order breaks ties between equal timestamps.
        return sorted(patches, key=lambda p: p.queued_at or ""), consumed

    def _load_shard(self, key: str) -> list[dict[str, Any]]:
        try:
            entries, _etag = self.bucket.get_json(key)
        except NotFoundError:
            return []
        except ValueError as e:
            raise StorageBackendError("load_shard", f"{key} is not valid JSON: {e}") from e
        if not isinstance(entries, list):
            raise StorageBackendError("load_shard", f"{key} does not hold a JSON array")
        out: list[dict[str, Any]] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if not isinstance(entry.get("id"), str):
                raise StorageBackendError(
                    "load_shard", f"{key} holds an entry without a string id"
                )
            out.append(entry)
        return out

    def _merge_pass(
        self,
        prefix: str,
        type_name: str,
        keys: list[str],
        handle: LockHandle,
        result: MergeResult,
    ) -> None:
        patches, consumed = self._read_patches(prefix, type_name, keys, result)

        by_shard: dict[str, list[Patch]] = {}
        for patch in patches:
            by_shard.setdefault(patch.shard, []).append(patch)

        for shard, shard_patches in by_shard.items():
            self.lock.ensure_lease_safe(handle)
            entries = apply_patches(self._load_shard(shard), shard_patches)
            self.bucket.put_json(shard, entries)
            if shard not in result.shards:
                result.shards.append(shard)

        if consumed:
            self.lock.ensure_lease_safe(handle)
            self._delete_consumed(consumed)

        result.applied += len(patches)
        result.status = "applied"
        result.reason = None

    def _delete_consumed(self, consumed: dict[str, str | None]) -> None:
        """Delete the patch versions this pass applied.

        Patch keys are content digests, so an identical patch queued during
        the merge lands on a key we already read. Deleting with ``If-Match``
        keeps such a re-queued patch for the next pass.
        """
        if not self._config.conditional_writes:
            self.bucket.delete_objects(list(consumed))
            return
        for key, etag in consumed.items():
            if not etag:
                self.bucket.delete_object(key)
                continue
            try:
                self.bucket.delete_object(key, if_match=etag)
            except PreconditionFailed:
                logger.debug(f"Keeping {key}: it was queued again during the merge")
            except StorageBackendError as e:
                # Endpoints without conditional deletes fall back to an etag check.
                logger.debug(f"Conditional delete of {key} refused: {e}")
                if self.bucket.head_etag(key) == etag:
                    self.bucket.delete_object(key)
