"""nocfl-index: sharded secondary indices over an S3-compatible bucket."""

__version__ = "0.1.0"

from nocfl_index.bucket import Bucket
from nocfl_index.config import IndexConfig
from nocfl_index.errors import (
    InvalidArgumentError,
    LeaseExpiredError,
    LockTimeoutError,
    MergeFailedError,
    NocflIndexError,
    NotFoundError,
    StorageBackendError,
)
from nocfl_index.indexer import Indexer
from nocfl_index.merger import MergeResult
from nocfl_index.patches import IndexEntry, Patch
from nocfl_index.router import route

__all__ = [
    "__version__",
    "Bucket",
    "IndexConfig",
    "Indexer",
    "IndexEntry",
    "MergeResult",
    "Patch",
    "route",
    "NocflIndexError",
    "InvalidArgumentError",
    "NotFoundError",
    "StorageBackendError",
    "LockTimeoutError",
    "LeaseExpiredError",
    "MergeFailedError",
]
