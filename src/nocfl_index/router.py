"""Shard routing and namespace key layout.

Every index namespace ``(prefix, type)`` lives under ``<prefix>/indices/<type>/``
with lower-cased path components:

- ``<char>.json``     one shard per lower-cased first character of the id
- ``patch-<digest>``  pending mutations waiting to be merged
- ``.update``         lock sentinel
"""

from __future__ import annotations

from nocfl_index.errors import InvalidArgumentError

INDEX_DIR = "indices"
PATCH_PREFIX = "patch-"
LOCK_NAME = ".update"
SHARD_SUFFIX = ".json"


def _require(name: str, value: str | None) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(f"You must provide '{name}'")
    return value


def shard_char(id: str) -> str:
    return _require("id", id)[0].lower()


def index_root(prefix: str, type_name: str | None = None) -> str:
    root = f"{_require('prefix', prefix).lower()}/{INDEX_DIR}"
    if type_name:
        root = f"{root}/{type_name.lower()}"
    return root


def namespace_root(prefix: str, type_name: str) -> str:
    return index_root(prefix, _require("type", type_name))


def route(prefix: str, type_name: str, id: str) -> str:
    """Return the shard key holding ``id`` within the ``(prefix, type)`` namespace."""
    return f"{namespace_root(prefix, type_name)}/{shard_char(id)}{SHARD_SUFFIX}"


def shard_key(prefix: str, type_name: str, file: str) -> str:
    return f"{namespace_root(prefix, type_name)}/{_require('file', file)}"


def patch_prefix(prefix: str, type_name: str) -> str:
    return f"{namespace_root(prefix, type_name)}/{PATCH_PREFIX}"


def patch_key(prefix: str, type_name: str, digest: str) -> str:
    return f"{patch_prefix(prefix, type_name)}{digest}"


def lock_key(prefix: str, type_name: str) -> str:
    return f"{namespace_root(prefix, type_name)}/{LOCK_NAME}"


def is_shard_key(key: str) -> bool:
    name = key.rsplit("/", 1)[-1]
    return name.endswith(SHARD_SUFFIX) and not name.startswith((PATCH_PREFIX, "."))
