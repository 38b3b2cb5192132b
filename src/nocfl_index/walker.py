"""Walk a bucket for stored objects via their identifier files."""

from __future__ import annotations

from typing import Any, Iterator

from loguru import logger

from nocfl_index.bucket import Bucket
from nocfl_index.errors import NotFoundError

IDENTIFIER_FILE = "nocfl.identifier.json"


def normalize_identifier(doc: dict[str, Any]) -> dict[str, Any] | None:
    """Map an identifier document onto ``{prefix, type, id, splay}``.

    Older objects use ``domain``/``className`` instead of ``prefix``/``type``.
    """
    prefix = doc.get("prefix") or doc.get("domain")
    type_name = doc.get("type") or doc.get("className")
    id = doc.get("id")
    if not prefix or not type_name or not id:
        return None
    try:
        splay = int(doc.get("splay") or 1)
    except (TypeError, ValueError):
        splay = 1
    return {"prefix": str(prefix), "type": str(type_name), "id": str(id), "splay": splay}


class Walker:
    def __init__(self, bucket: Bucket) -> None:
        self.bucket = bucket

    def walk(self, prefix: str | None = None) -> Iterator[dict[str, Any]]:
        """Yield the descriptor of every object under ``prefix`` (or the whole bucket)."""
        root = f"{prefix.lower()}/" if prefix else ""
        for key in self.bucket.iter_keys(root):
            if key.rsplit("/", 1)[-1] != IDENTIFIER_FILE:
                continue
            try:
                doc, _etag = self.bucket.get_json(key)
            except NotFoundError:
                continue
            except ValueError as e:
                logger.warning(f"Skipping unreadable identifier {key}: {e}")
                continue
            descriptor = normalize_identifier(doc) if isinstance(doc, dict) else None
            if descriptor is None:
                logger.warning(f"Skipping incomplete identifier {key}")
                continue
            yield descriptor
