"""Structured error types for nocfl-index."""

from __future__ import annotations


class NocflIndexError(Exception):
    """Base error for all index errors."""


class InvalidArgumentError(NocflIndexError, ValueError):
    """Raised when an operation is called with a bad action or missing identifiers."""


class NotFoundError(NocflIndexError):
    """Raised when an object does not exist in the bucket."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


class StorageBackendError(NocflIndexError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class LockTimeoutError(NocflIndexError):
    """Raised when the namespace lock cannot be acquired within the allowed attempts."""

    def __init__(self, lock_key: str, attempts: int) -> None:
        self.lock_key = lock_key
        self.attempts = attempts
        super().__init__(f"Could not acquire '{lock_key}' after {attempts} attempt(s)")


class LeaseExpiredError(NocflIndexError):
    """Raised when a lock lease expires or is taken over before a merge completes."""

    def __init__(self, lock_key: str | None = None) -> None:
        self.lock_key = lock_key
        where = f" on '{lock_key}'" if lock_key else ""
        super().__init__(f"Lock lease expired{where} before merge finalization")


class MergeFailedError(NocflIndexError):
    """Raised when a merge pass over a namespace cannot complete."""

    def __init__(self, prefix: str, type_name: str, reason: str) -> None:
        self.prefix = prefix
        self.type_name = type_name
        self.reason = reason
        super().__init__(f"Merge failed for {prefix}/{type_name}: {reason}")
