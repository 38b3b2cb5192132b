"""Content-addressed patch objects queued for the index merger."""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from nocfl_index import router
from nocfl_index.bucket import Bucket, dump_json
from nocfl_index.config import IndexConfig
from nocfl_index.errors import InvalidArgumentError

ACTIONS = ("PUT", "DELETE")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class IndexEntry:
    prefix: str
    type: str
    id: str
    splay: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"prefix": self.prefix, "type": self.type, "id": self.id, "splay": self.splay}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexEntry:
        return cls(
            prefix=str(data["prefix"]),
            type=str(data["type"]),
            id=str(data["id"]),
            splay=int(data.get("splay", 1)),
        )


@dataclass(frozen=True)
class Patch:
    action: str
    data: IndexEntry
    queued_at: str | None = None

    @property
    def digest(self) -> str:
        """SHA-256 over the canonical ``{action, data}`` form; ``queued_at`` is excluded."""
        return hashlib.sha256(dump_json(self.identity())).hexdigest()

    @property
    def shard(self) -> str:
        return router.route(self.data.prefix, self.data.type, self.data.id)

    def identity(self) -> dict[str, Any]:
        return {"action": self.action, "data": self.data.to_dict()}

    def to_dict(self) -> dict[str, Any]:
        doc = self.identity()
        if self.queued_at is not None:
            doc["queued_at"] = self.queued_at
        return doc

    @classmethod
    def from_dict(cls, doc: Any) -> Patch:
        """Parse a stored patch. Raises ``ValueError`` on any malformed document."""
        if not isinstance(doc, dict):
            raise ValueError("patch document must be an object")
        action = doc.get("action")
        if action not in ACTIONS:
            raise ValueError(f"unknown patch action: {action!r}")
        data = doc.get("data")
        if not isinstance(data, dict):
            raise ValueError("patch data must be an object")
        try:
            entry = IndexEntry.from_dict(data)
        except (KeyError, TypeError) as e:
            raise ValueError(f"patch data is incomplete: {e}") from e
        if not entry.id:
            raise ValueError("patch data has an empty id")
        queued_at = doc.get("queued_at")
        return cls(action=action, data=entry, queued_at=str(queued_at) if queued_at else None)


def build_patch(action: str, prefix: str, type_name: str, id: str, splay: int = 1) -> Patch:
    if action not in ACTIONS:
        raise InvalidArgumentError("'action' must be one of 'PUT' or 'DELETE'")
    for name, value in (("prefix", prefix), ("type", type_name), ("id", id)):
        if not isinstance(value, str) or not value:
            raise InvalidArgumentError(f"You must provide '{name}'")
    if isinstance(splay, bool) or not isinstance(splay, int) or splay < 1:
        raise InvalidArgumentError("'splay' must be a positive integer")
    return Patch(
        action=action,
        data=IndexEntry(prefix=prefix, type=type_name, id=id, splay=splay),
        queued_at=_now_iso(),
    )


class PatchWriter:
    """Durably records single index mutations as immutable patch objects."""

    def __init__(self, bucket: Bucket, config: IndexConfig | None = None) -> None:
        self.bucket = bucket
        self._config = config or IndexConfig()

    def write(self, action: str, prefix: str, type_name: str, id: str, splay: int = 1) -> str:
        patch = build_patch(action, prefix, type_name, id, splay)
        key = router.patch_key(prefix, type_name, patch.digest)
        self.bucket.put_json(key, patch.to_dict())
        logger.debug(f"Queued {action} {id} at {key}")
        return key

    def pending(self, prefix: str, type_name: str) -> list[str]:
        return list(self.bucket.iter_keys(router.patch_prefix(prefix, type_name)))

    def splay_delay(self) -> float:
        """Random pause in seconds before merging, to spread lock contention."""
        return random.uniform(0.0, self._config.patch_splay_max_ms / 1000.0)
